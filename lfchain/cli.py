# This file is part of lfchain
#
# lfchain is free software: you can redistribute it and/or modify
# it under the terms of the GNU Lesser General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU Lesser General Public License for more details.
#
# You should have received a copy of the GNU Lesser General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.
#
#
# Copyright 2026 lfchain contributors


import argparse
import os
import time
from pathlib import Path
from typing import List, Optional

import serial
import serial.tools.list_ports
from rich.console import Console

from . import LFChainError, __version__
from .allocator import IdentifierAllocator
from .chain import value_to_bytes
from .offset import DEFAULT_OFFSET
from .protocol import Outcome, RollingAuthProtocol
from .serial_worker import BOARD_NAME, SerialTagWorker
from .store import CredentialStore
from .tool import TagTool
from .worker import MemoryTagWorker, TagWorker

console = Console()


def default_store() -> Path:
    return Path(os.environ.get("LFCHAIN_STORE", Path.home() / ".lfchain"))


class CLI:
    """Command Line Interface for low-frequency tags and rolling credentials."""

    def __init__(self):
        self.worker: Optional[TagWorker] = None
        self.parser = self.create_parser()

    def create_parser(self):
        """Create the argument parser for the CLI."""
        parser = argparse.ArgumentParser(prog="lfchain")
        parser.add_argument(
            "--dev",
            help="Select reader bridge device (optional)",
            default=None,
            required=False,
        )
        parser.add_argument(
            "--simulate",
            action="store_true",
            help="Use a simulated reader instead of a reader bridge",
        )
        parser.add_argument(
            "--tag",
            help="Payload of the simulated card, as hex string",
            default=None,
        )
        parser.add_argument(
            "--store",
            type=Path,
            default=default_store(),
            help="Credential store directory (default: $LFCHAIN_STORE or ~/.lfchain)",
        )
        parser.add_argument(
            "--timeout",
            type=float,
            default=10,
            help="Tag operation timeout in seconds (default: 10)",
        )
        parser.add_argument(
            "--verbose", action="store_true", help="Trace reader traffic"
        )
        parser.add_argument(
            "--version", action="version", version=f"%(prog)s {__version__}"
        )
        subparsers = parser.add_subparsers(dest="command", required=True)

        subparsers.add_parser("list", help="List available reader bridges")
        subparsers.add_parser("read", help="Read a tag")
        write_parser = subparsers.add_parser(
            "write", help="Read a tag and write it back with an offset"
        )
        write_parser.add_argument(
            "--offset",
            type=int,
            default=DEFAULT_OFFSET,
            help=f"Offset added to the payload (default: {DEFAULT_OFFSET})",
        )
        emulate_parser = subparsers.add_parser("emulate", help="Emulate a tag")
        emulate_parser.add_argument("hexstr", help="Tag payload as hex string")
        subparsers.add_parser("create", help="Create a rolling credential card")
        verify_parser = subparsers.add_parser(
            "verify", help="Verify a rolling credential card and advance it"
        )
        verify_parser.add_argument(
            "--no-advance",
            action="store_true",
            help="Only verify the card, do not advance it",
        )
        subparsers.add_parser("cards", help="List stored cards")
        show_parser = subparsers.add_parser("show", help="Show a stored card")
        show_parser.add_argument("card_id", type=int, help="Card identifier")
        release_parser = subparsers.add_parser(
            "release", help="Delete a card record and free its identifier"
        )
        release_parser.add_argument("card_id", type=int, help="Card identifier")
        return parser

    def print_outcome(self, outcome: Outcome):
        color = "green" if outcome.succeeded else "red"
        value = ""
        if outcome.value is not None:
            value = (
                f"[{color}] value [/{color}]"
                f"[bold yellow]{value_to_bytes(outcome.value).hex()}[/bold yellow]"
            )
        console.print(f"[{color}]{outcome.reason}[/{color}]{value}")

    def print_simulated_card(self):
        if isinstance(self.worker, MemoryTagWorker) and self.worker.tag is not None:
            console.print(
                f"[blue]Simulated card holds [/blue]"
                f"[bold yellow]{self.worker.tag.hex()}[/bold yellow]"
            )

    def handle_list(self) -> None:
        """
        Handle the 'list' command to list available reader bridges.
        """
        found = False
        for port in serial.tools.list_ports.comports():
            if port.product is not None and port.product.lower() == BOARD_NAME:
                console.print(
                    f"[green]Found device: [/green][bold yellow]{port.device}[/bold yellow]"
                    f"[green] - {port.description} ({port.hwid})[/green]"
                )
                found = True
        if not found:
            console.print("[red]No reader bridge found.[/red]")

    def handle_read(self, args: argparse.Namespace) -> None:
        tool = TagTool(self.worker)
        console.print("[green]Place tag near the reader...[/green]")
        tool.read()
        if not tool.wait(args.timeout):
            tool.stop()
            console.print("[red]No tag read (reason: timeout).[/red]")
            return
        if not tool.tag_found:
            console.print(f"[red]{tool.status}[/red]")
            return
        console.print(
            f"[green]Tag data: [/green][bold yellow]{tool.tag_data.hex()}[/bold yellow]"
        )

    def handle_write(self, args: argparse.Namespace) -> None:
        tool = TagTool(self.worker, offset=args.offset)
        console.print("[green]Place tag near the reader...[/green]")
        tool.read()
        if not tool.wait(args.timeout) or not tool.tag_found:
            tool.stop()
            console.print("[red]No tag read, nothing written.[/red]")
            return
        console.print(
            f"[green]Tag data: [/green][bold yellow]{tool.tag_data.hex()}[/bold yellow]"
            f"[green], writing with offset [/green][bold yellow]{args.offset}[/bold yellow]"
        )
        tool.write()
        if not tool.wait(args.timeout):
            tool.stop()
            console.print("[red]Write failed (reason: timeout).[/red]")
            return
        color = "green" if tool.write_ok else "red"
        console.print(f"[{color}]{tool.status}[/{color}]")
        self.print_simulated_card()

    def handle_emulate(self, args: argparse.Namespace) -> None:
        payload = bytes.fromhex(args.hexstr)
        self.worker.emulate_start(payload)
        console.print(
            f"[blue]Emulating [/blue][bold yellow]{payload.hex()}[/bold yellow]"
            "[blue]. Press Ctrl+C to stop.[/blue]"
        )
        try:
            while True:
                time.sleep(0.5)
        except KeyboardInterrupt:
            pass
        self.worker.stop()
        console.print("[blue]Emulation stopped.[/blue]")

    def make_protocol(self, args: argparse.Namespace) -> RollingAuthProtocol:
        protocol = RollingAuthProtocol(
            self.worker,
            IdentifierAllocator(args.store),
            CredentialStore(args.store),
            auto_advance=not getattr(args, "no_advance", False),
            on_outcome=self.print_outcome,
        )
        protocol.verbose = args.verbose
        return protocol

    def run_protocol(self, protocol: RollingAuthProtocol, args: argparse.Namespace):
        console.print("[green]Place card near the reader...[/green]")
        try:
            outcome = protocol.run(timeout=args.timeout)
        except KeyboardInterrupt:
            protocol.cancel()
            outcome = None
        if outcome is None:
            console.print("[red]Operation cancelled.[/red]")
        self.print_simulated_card()

    def handle_create(self, args: argparse.Namespace) -> None:
        protocol = self.make_protocol(args)
        protocol.create()
        self.run_protocol(protocol, args)

    def handle_verify(self, args: argparse.Namespace) -> None:
        protocol = self.make_protocol(args)
        protocol.verify()
        self.run_protocol(protocol, args)

    def handle_cards(self, args: argparse.Namespace) -> None:
        store = CredentialStore(args.store)
        card_ids = store.card_ids()
        if len(card_ids) == 0:
            console.print("[yellow]No card stored.[/yellow]")
        for card_id in card_ids:
            self.handle_show(args, card_id)

    def handle_show(self, args: argparse.Namespace, card_id: Optional[int] = None) -> None:
        if card_id is None:
            card_id = args.card_id
        record = CredentialStore(args.store).read(card_id)
        console.print(
            f"[green]Card [/green][bold yellow]{record.card_id}[/bold yellow]"
            f"[green] index [/green][bold yellow]{record.current_index}[/bold yellow]"
            f"[green] expects [/green]"
            f"[bold yellow]{record.tag_payload().hex()}[/bold yellow]"
            + (" [red](exhausted)[/red]" if record.exhausted else "")
        )

    def handle_release(self, args: argparse.Namespace) -> None:
        store = CredentialStore(args.store)
        if args.card_id in store.card_ids():
            store.delete(args.card_id)
        IdentifierAllocator(args.store).release(args.card_id)
        console.print(
            f"[green]Card [/green][bold yellow]{args.card_id}[/bold yellow]"
            "[green] released[/green]"
        )

    def run(self, argv: Optional[List[str]] = None) -> None:
        """
        Parse command-line arguments, open the reader if needed and dispatch
        to the appropriate handler.

        :param argv: Arguments to parse. Defaults to the process arguments.
        """
        args = self.parser.parse_args(argv)

        if args.command == "list":
            self.handle_list()
            return

        try:
            if args.command in ("cards", "show", "release"):
                getattr(self, f"handle_{args.command}")(args)
                return
        except (LFChainError, ValueError) as e:
            console.print(f"[red]Error: {e}[/red]")
            return

        if args.simulate:
            # Without --tag, a blank card is in the field.
            tag = bytes(5) if args.tag is None else bytes.fromhex(args.tag)
            self.worker = MemoryTagWorker(tag)
            console.print("[yellow]Using simulated reader.[/yellow]")
        else:
            try:
                self.worker = SerialTagWorker(dev=args.dev)
            except (RuntimeError, LFChainError, serial.SerialException):
                console.print(
                    "[red]Error: Unable to connect to the reader bridge.[/red]"
                )
                return
            console.print(
                f"[yellow]Reader bridge firmware: [/yellow]"
                f"[bold yellow]{self.worker.version}[/bold yellow]"
            )
        self.worker.verbose = args.verbose

        try:
            getattr(self, f"handle_{args.command}")(args)
        except (LFChainError, ValueError) as e:
            console.print(f"[red]Error: {e}[/red]")
        finally:
            if isinstance(self.worker, SerialTagWorker):
                self.worker.close()


def main() -> None:
    CLI().run()


if __name__ == "__main__":
    main()
