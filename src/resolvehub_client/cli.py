from __future__ import annotations

import argparse
import asyncio
import logging
from contextlib import suppress
from typing import Optional, Sequence

from prompt_toolkit import PromptSession
from prompt_toolkit.patch_stdout import patch_stdout
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from resolvehub_client.api.client import BackendClient
from resolvehub_client.config import settings
from resolvehub_client.conversation import ConversationState
from resolvehub_client.desk import DeskView, ExpertDesk
from resolvehub_client.field import FieldAssistant
from resolvehub_client.notifications import NotificationQueue
from resolvehub_client.prioritizer import build_analysis_report
from resolvehub_client.schemas import (
    AnalysisParsed,
    AssistantReply,
    Notification,
    NotificationKind,
    SenderType,
    Ticket,
    TicketCategory,
    TicketDetail,
)
from resolvehub_client.storage import StateStorage
from resolvehub_client.utils import (
    CATEGORY_LABELS,
    STATUS_LABELS,
    URGENCY_LABELS,
    USER_STATUS_LABELS,
    format_date,
    label_for,
)

console = Console()

KIND_STYLES = {
    NotificationKind.SUCCESS: "green",
    NotificationKind.ERROR: "bold red",
    NotificationKind.WARNING: "yellow",
    NotificationKind.INFO: "cyan",
}
SENDER_LABELS = {
    SenderType.USER: "Utilisateur",
    SenderType.EXPERT: "Expert",
    SenderType.SYSTEM: "Système",
}
FIELD_COMMANDS = {
    ":photo <chemin>": "Joindre une photo (avant la première question)",
    ":expert": "Envoyer la conversation à un expert",
    ":history": "Afficher mes demandes",
    ":ticket <id>": "Détail d'une demande",
    ":numbers": "Numéros utiles",
    ":new": "Nouveau problème (même catégorie)",
    ":category": "Changer de catégorie",
    ":help": "Liste des commandes",
    ":quit": "Quitter",
}
DESK_COMMANDS = {
    ":status <open|assigned|resolved|all>": "Filtrer par statut",
    ":category <agriculture|elevage|sos_accident|cybersecurity|all>": "Filtrer par catégorie",
    ":urgency <low|medium|high|all>": "Filtrer par urgence",
    ":search <texte>": "Recherche libre (vide pour effacer)",
    ":open <id>": "Ouvrir un ticket",
    ":reply <texte>": "Répondre au ticket ouvert",
    ":resolve": "Marquer le ticket ouvert comme résolu",
    ":back": "Retour au tableau de bord",
    ":list": "Réafficher la vue",
    ":logout": "Se déconnecter",
    ":help": "Liste des commandes",
    ":quit": "Quitter",
}


def render_notification(notification: Notification) -> None:
    style = KIND_STYLES.get(notification.kind, "white")
    console.print(Text(f"● {notification.message}", style=style))


def _render_commands(commands: dict[str, str]) -> None:
    console.print(
        Panel(
            "\n".join(f"[bold]{cmd}[/bold] – {info}" for cmd, info in commands.items()),
            title="Commandes",
            border_style="cyan",
        )
    )


def render_reply(reply: AssistantReply) -> None:
    console.print(Panel(Text(reply.text), title="Assistant", border_style="green"))
    for media in reply.media:
        kind = "🎬" if media.get("type") == "video" else "🖼"
        console.print(f"  {kind} {escape(media.get('title') or '')} [dim]{escape(media.get('url') or '')}[/dim]")
    if isinstance(reply.analysis, AnalysisParsed) and not reply.text.startswith("🔬"):
        console.print(
            Panel(Text(build_analysis_report(reply.analysis.record)), title="Analyse photo", border_style="magenta")
        )


def render_tickets(tickets: Sequence[Ticket], *, title: str, user_side: bool = False) -> None:
    if not tickets:
        console.print("[dim]Aucun ticket.[/dim]")
        return
    status_labels = USER_STATUS_LABELS if user_side else STATUS_LABELS
    table = Table(title=title)
    table.add_column("#", justify="right")
    table.add_column("Statut")
    table.add_column("Catégorie")
    table.add_column("Urgence")
    if not user_side:
        table.add_column("Téléphone")
    table.add_column("Message", overflow="fold", max_width=60)
    table.add_column("Date")
    for ticket in tickets:
        row = [
            str(ticket.id),
            label_for(status_labels, ticket.status),
            label_for(CATEGORY_LABELS, ticket.category, "-"),
            label_for(URGENCY_LABELS, ticket.urgency),
        ]
        if not user_side:
            row.append(Text(ticket.user_phone))
        row.extend([Text(ticket.last_message), format_date(ticket.created_at)])
        table.add_row(*row)
    console.print(table)


def render_detail(detail: TicketDetail, *, user_side: bool = False) -> None:
    ticket = detail.ticket
    status_labels = USER_STATUS_LABELS if user_side else STATUS_LABELS
    header = (
        f"Statut : {label_for(status_labels, ticket.status)} · "
        f"Catégorie : {label_for(CATEGORY_LABELS, ticket.category, '-')} · "
        f"Urgence : {label_for(URGENCY_LABELS, ticket.urgency)}\n"
        f"Téléphone : {escape(detail.user.phone or ticket.user_phone)} · {escape(detail.user.name or '')}"
    )
    if ticket.photo_url:
        header += "\nPhoto jointe"
    console.print(Panel(header, title=f"Ticket #{ticket.id}", border_style="cyan"))
    for message in detail.messages:
        console.print(
            f"[bold]{SENDER_LABELS.get(message.sender_type, message.sender_type.value)}[/bold] "
            f"[dim]{format_date(message.sent_at)}[/dim]\n{escape(message.content)}\n"
        )
    if detail.synthesized:
        console.print("[dim]Détail reconstruit à partir de l'historique.[/dim]")


async def _spin(awaitable, message: str):
    with console.status(f"[bold cyan]{message}[/bold cyan]", spinner="dots"):
        return await awaitable


async def _choose_category(prompt: PromptSession, assistant: FieldAssistant) -> bool:
    choices = list(TicketCategory)
    console.print(
        "\n".join(
            f"  [bold]{index}[/bold]. {CATEGORY_LABELS[category.value]}"
            for index, category in enumerate(choices, start=1)
        )
    )
    while True:
        answer = (await prompt.prompt_async("Catégorie : ")).strip()
        if answer == ":quit":
            return False
        if answer.isdigit() and 1 <= int(answer) <= len(choices):
            answer = choices[int(answer) - 1].value
        if assistant.choose_category(answer):
            console.print(
                f"[green]{CATEGORY_LABELS[assistant.conversation.category.value]}[/green] – "
                "décrivez votre problème."
            )
            return True


async def run_field(args: argparse.Namespace) -> None:
    notifications = NotificationQueue(settings.notification_ttl)
    notifications.subscribe(render_notification)
    prompt: PromptSession = PromptSession()

    async with BackendClient(args.api_url, timeout=settings.request_timeout) as client:
        assistant = FieldAssistant(
            client,
            notifications,
            StateStorage(settings.state_file),
            channel=settings.channel,
            max_photo_bytes=settings.max_photo_bytes,
        )
        phone = args.phone or assistant.phone
        while not assistant.set_phone(phone or ""):
            phone = await prompt.prompt_async("Numéro de téléphone : ")
        console.print(f"[dim]Connecté avec le numéro {assistant.phone}.[/dim]")
        await assistant.resume()
        if assistant.history:
            render_tickets(assistant.history, title="Mes demandes", user_side=True)

        if not await _choose_category(prompt, assistant):
            return

        with patch_stdout():
            while True:
                state = assistant.conversation.state
                label = "Question" if state == ConversationState.IDLE else "Suite"
                line = (await prompt.prompt_async(f"{label} > ")).strip()
                if not line:
                    continue

                if line.startswith(":") and not line.startswith("::"):
                    command, _, rest = line.partition(" ")
                    command = command.lower()
                    rest = rest.strip()
                    if command == ":quit":
                        return
                    if command == ":help":
                        _render_commands(FIELD_COMMANDS)
                    elif command == ":photo":
                        if assistant.attach_photo(rest):
                            console.print("[green]Photo jointe.[/green]")
                    elif command == ":expert":
                        escalated = await _spin(assistant.escalate(), "Envoi à un expert …")
                        if escalated is not None:
                            console.print(
                                f"[bold green]Ticket #{escalated.ticket_id} créé.[/bold green] "
                                "Tapez :new pour un autre problème."
                            )
                    elif command == ":history":
                        await assistant.load_history()
                        render_tickets(assistant.history, title="Mes demandes", user_side=True)
                    elif command == ":ticket":
                        if not rest.isdigit():
                            console.print("[yellow]Usage : :ticket <id>[/yellow]")
                            continue
                        detail = await assistant.ticket_detail(int(rest))
                        if detail is not None:
                            render_detail(detail, user_side=True)
                    elif command == ":numbers":
                        numbers = await assistant.load_emergency_numbers()
                        for number in numbers:
                            console.print(
                                f"  [bold]{number.label}[/bold] : {number.number}"
                                + (f" [dim]{number.description}[/dim]" if number.description else "")
                            )
                    elif command == ":new":
                        assistant.new_problem()
                        console.print("[dim]Nouveau problème.[/dim]")
                    elif command == ":category":
                        if not await _choose_category(prompt, assistant):
                            return
                    else:
                        console.print(f"[yellow]Commande inconnue '{command}'. Tapez :help.[/yellow]")
                    continue

                text = line[1:] if line.startswith("::") else line
                if state == ConversationState.IDLE:
                    reply = await _spin(assistant.submit(text), "L'assistant réfléchit …")
                elif state == ConversationState.CONVERSING:
                    reply = await _spin(assistant.ask(text), "L'assistant réfléchit …")
                else:
                    console.print("[yellow]Demande déjà transmise. Tapez :new pour un autre problème.[/yellow]")
                    continue
                if reply is not None:
                    render_reply(reply)


def _render_desk(desk: ExpertDesk) -> None:
    if desk.view == DeskView.TICKET_DETAIL and desk.detail is not None:
        render_detail(desk.detail)
        return
    stats = desk.stats
    console.print(
        f"[bold]Total[/bold] {stats.total_tickets} · [bold]Ouverts[/bold] {stats.open_tickets} · "
        f"[bold]Assignés[/bold] {stats.assigned_tickets} · "
        f"[bold]Résolus aujourd'hui[/bold] {stats.resolved_today} · "
        f"[bold]Avec photo[/bold] {stats.tickets_with_photos}"
    )
    render_tickets(desk.tickets, title="Tickets")


async def _desk_login(prompt: PromptSession, desk: ExpertDesk, email: Optional[str]) -> bool:
    while desk.view == DeskView.LOGIN:
        if not email:
            email = (await prompt.prompt_async("Email : ")).strip()
            if email == ":quit":
                return False
        password = await prompt.prompt_async("Mot de passe : ", is_password=True)
        if not await _spin(desk.login(email, password), "Connexion …"):
            email = None
    return True


async def run_desk(args: argparse.Namespace) -> None:
    notifications = NotificationQueue(settings.notification_ttl)
    notifications.subscribe(render_notification)
    prompt: PromptSession = PromptSession()

    async with BackendClient(args.api_url, timeout=settings.request_timeout) as client:
        desk = ExpertDesk(
            client,
            notifications,
            StateStorage(settings.state_file),
            refresh_interval=settings.refresh_interval,
            refetch_delay=settings.resolve_refetch_delay,
        )
        try:
            await desk.resume()
            with patch_stdout():
                while True:
                    if desk.view == DeskView.LOGIN and not await _desk_login(prompt, desk, args.email):
                        return
                    _render_desk(desk)
                    line = (await prompt.prompt_async("desk > ")).strip()
                    if desk.view == DeskView.LOGIN:
                        # The session ended while the prompt was open.
                        continue
                    command, _, rest = line.partition(" ")
                    command = command.lower()
                    rest = rest.strip()

                    if command in ("", ":list"):
                        continue
                    if command == ":quit":
                        return
                    if command == ":help":
                        _render_commands(DESK_COMMANDS)
                    elif command in (":status", ":category", ":urgency"):
                        desk.update_filter(**{command[1:]: rest or "all"})
                    elif command == ":search":
                        desk.update_filter(query=rest)
                    elif command == ":open":
                        if not rest.isdigit():
                            console.print("[yellow]Usage : :open <id>[/yellow]")
                            continue
                        await _spin(desk.open_ticket(int(rest)), "Chargement …")
                    elif command == ":reply":
                        await _spin(desk.reply(rest), "Envoi …")
                    elif command == ":resolve":
                        await _spin(desk.resolve(), "Résolution …")
                    elif command == ":back":
                        await desk.back_to_dashboard()
                    elif command == ":logout":
                        desk.logout()
                        args.email = None
                    else:
                        console.print(f"[yellow]Commande inconnue '{command}'. Tapez :help.[/yellow]")
        finally:
            desk.shutdown()


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Clients en ligne de commande ResolveHub.")
    parser.add_argument(
        "--api-url",
        default=settings.api_url,
        help=f"Adresse du backend. Par défaut {settings.api_url}.",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"),
        help="Niveau de journalisation. Par défaut WARNING.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    field_parser = subparsers.add_parser("field", help="Assistant pour l'utilisateur terrain.")
    field_parser.add_argument("--phone", help="Numéro de téléphone à utiliser.")

    desk_parser = subparsers.add_parser("desk", help="Tableau de bord de l'expert.")
    desk_parser.add_argument("--email", help="Email de connexion de l'expert.")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> None:
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.WARNING),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    console.print("[dim]Pour quitter : :quit ou CTRL+C.[/dim]\n")
    runner = run_field if args.command == "field" else run_desk
    with suppress(KeyboardInterrupt, EOFError):
        asyncio.run(runner(args))
    console.print("\nAu revoir.")


if __name__ == "__main__":
    main()
