"""Message template rendering.

Rule bodies and notification texts use ``{{placeholder}}`` tokens. Rendering
happens in memory at send time; the rendered text goes to the provider and
the transcript, never to logs.
"""

from __future__ import annotations

import re
from typing import Any, Mapping

# {{ key }} with optional inner whitespace. Anything else (unclosed braces,
# empty tokens, punctuation inside) is not a token and stays as written.
_TOKEN = re.compile(r"\{\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}\}")

# Placeholders the product documents to tenants. A documented placeholder
# with no value renders empty; anything else is left verbatim so typos stay
# visible in the delivered text.
KNOWN_PLACEHOLDERS = frozenset(
    {
        "nome",
        "nome_completo",
        "name",
        "fullName",
        "matricula",
        "registration",
        "secretaria",
        "department",
        "email",
        "numero",
        "number",
        "titulo",
        "title",
        "status",
        "status_anterior",
        "prioridade",
        "responsavel",
        "assignee",
    }
)

DEFAULT_BODIES: dict[str, str] = {
    "birthday": "Feliz aniversário, {{nome}}! 🎂🎉",
    "new_contact": (
        "Olá {{nome}}! Seja bem-vindo(a) ao nosso atendimento. "
        "Como posso ajudá-lo(a) hoje?"
    ),
    "first_message": (
        "Olá {{nome}}! Seja bem-vindo(a) ao nosso atendimento. "
        "Como posso ajudá-lo(a) hoje?"
    ),
    "keyword": (
        "Olá {{nome}}! Seja bem-vindo(a) ao nosso atendimento. "
        "Como posso ajudá-lo(a) hoje?"
    ),
    "no_response": "Ainda está aí? Como posso te ajudar?",
    "ticket_status": (
        "Chamado #{{numero}} ({{titulo}}) mudou de {{status_anterior}} para {{status}}."
    ),
}

TICKET_CREATED_DEFAULT = "Novo chamado #{{numero}}: {{titulo}} (prioridade {{prioridade}})."

STATUS_LABELS = {
    "aberto_ia": "Aberto (IA)",
    "em_analise": "Em análise",
    "pendente": "Pendente",
    "concluido": "Concluído",
    "cancelado": "Cancelado",
}


def render(
    template: str,
    variables: Mapping[str, Any],
    known: frozenset[str] = KNOWN_PLACEHOLDERS,
) -> str:
    """Substitute ``{{key}}`` tokens.

    - key present in ``variables``: its value (None renders as "")
    - key in ``known`` but absent: ""
    - any other key: the token is kept verbatim
    """

    def _replace(match: re.Match[str]) -> str:
        key = match.group(1)
        if key in variables:
            value = variables[key]
            return "" if value is None else str(value)
        if key in known:
            return ""
        return match.group(0)

    return _TOKEN.sub(_replace, template)


def first_name(full_name: str | None) -> str:
    if not full_name:
        return ""
    parts = full_name.strip().split()
    return parts[0] if parts else ""


def contact_variables(contact: Any) -> dict[str, str]:
    """Variables for a contact, with Portuguese and English aliases."""
    full = (getattr(contact, "name", None) or "").strip()
    short = first_name(full)
    registration = getattr(contact, "registration", None) or ""
    department = getattr(contact, "department", None) or ""
    email = getattr(contact, "email", None) or ""
    return {
        "nome": short,
        "name": short,
        "nome_completo": full,
        "fullName": full,
        "matricula": registration,
        "registration": registration,
        "secretaria": department,
        "department": department,
        "email": email,
    }


def ticket_variables(
    ticket: Any,
    *,
    old_status: str | None = None,
    assignee_name: str | None = None,
    recipient_name: str | None = None,
) -> dict[str, str]:
    """Variables for a ticket notification."""
    number = str(getattr(ticket, "number", "") or "")
    title = getattr(ticket, "title", "") or ""
    status = STATUS_LABELS.get(ticket.status, ticket.status)
    previous = STATUS_LABELS.get(old_status, old_status or "") if old_status else ""
    assignee = assignee_name or ""
    variables = {
        "numero": number,
        "number": number,
        "titulo": title,
        "title": title,
        "status": status,
        "status_anterior": previous,
        "prioridade": getattr(ticket, "priority", "") or "",
        "responsavel": assignee,
        "assignee": assignee,
    }
    if recipient_name is not None:
        variables["nome"] = first_name(recipient_name)
        variables["nome_completo"] = recipient_name
    return variables


def resolve_body(
    inline_message: str | None,
    template_body: str | None,
    trigger_type: str,
) -> str:
    """Pick the text to render: inline message, then template body, then default."""
    if inline_message and inline_message.strip():
        return inline_message
    if template_body and template_body.strip():
        return template_body
    return DEFAULT_BODIES.get(trigger_type, "")
