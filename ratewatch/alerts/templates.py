"""Email bodies for owner alerts, client alerts and the weekly digest.

Every builder takes the ``template_data`` dict handed to the sink and returns
``(subject, html)``.
"""

from __future__ import annotations

from html import escape

KIND_RATE_ALERT = "rate_alert"
KIND_WEEKLY_SUMMARY = "weekly_summary"


def _money(value) -> str:
    return f"${float(value or 0):,.2f}"


def _pct(value) -> str:
    return f"{float(value):.3f}%"


def client_link(base_url: str, client_id: str) -> str:
    return f"{base_url.rstrip('/')}/crm?client={client_id}"


def owner_alert(data: dict) -> tuple[str, str]:
    client_name = escape(data.get("client_name") or "Client")
    subject = f"Rate Alert: {data.get('client_name') or 'Client'} - Target Rate Hit!"
    lines = [
        f"<h2>Target rate reached for {client_name}</h2>",
        f"<p>The current {escape(data.get('series_name', ''))} rate is "
        f"<b>{_pct(data['observed_rate'])}</b>, at or below the target of {_pct(data['target_rate'])}.</p>",
    ]
    if data.get("monthly_savings"):
        lines.append(
            f"<p>Estimated savings on a {_money(data.get('loan_amount'))} loan: "
            f"<b>{_money(data['monthly_savings'])}/month</b> "
            f"({_money(data.get('lifetime_savings'))} over the life of the loan).</p>"
        )
    if data.get("client_email"):
        lines.append(f"<p>Client email: {escape(data['client_email'])}</p>")
    lines.append(f'<p><a href="{escape(data["link"])}">Open {client_name} in your CRM</a></p>')
    return subject, "\n".join(lines)


def client_alert(data: dict) -> tuple[str, str]:
    first = escape((data.get("client_name") or "there").split(" ")[0])
    owner = escape(data.get("owner_name") or "your loan officer")
    subject = "Good news: mortgage rates have reached your target"
    lines = [
        f"<p>Hi {first},</p>",
        f"<p>Great news! {escape(data.get('series_name', 'Mortgage'))} rates are now at "
        f"<b>{_pct(data['observed_rate'])}</b>, which meets the target of {_pct(data['target_rate'])} "
        "you set with us.</p>",
        "<p>This could be a good time to talk about your options.</p>",
        f"<p>Reach out to {owner}:</p>",
        "<ul>",
    ]
    if data.get("owner_email"):
        lines.append(f"<li>Email: {escape(data['owner_email'])}</li>")
    if data.get("owner_phone"):
        lines.append(f"<li>Phone: {escape(data['owner_phone'])}</li>")
    lines.append("</ul>")
    return subject, "\n".join(lines)


def weekly_summary(data: dict) -> tuple[str, str]:
    subject = f"Weekly Rate Summary - {data.get('as_of') or 'latest'}"
    rows = []
    for item in data.get("series", []):
        change = item.get("change_week")
        change_txt = "n/a" if change is None else f"{float(change):+.3f}"
        rows.append(
            f"<tr><td>{escape(item['name'])}</td><td>{_pct(item['rate'])}</td>"
            f"<td>{change_txt}</td><td>{escape(item.get('trend') or '')}</td></tr>"
        )
    lines = [
        f"<p>Hi {escape(data.get('owner_name') or 'there')},</p>",
        "<p>Here is this week's rate summary.</p>",
        "<table><tr><th>Series</th><th>Rate</th><th>Week change</th><th>Trend</th></tr>",
        *rows,
        "</table>",
        f"<p>Clients at or below target: <b>{int(data.get('clients_at_target') or 0)}</b></p>",
    ]
    return subject, "\n".join(lines)


def render(role: str, data: dict) -> tuple[str, str]:
    kind = data.get("kind", KIND_RATE_ALERT)
    if kind == KIND_WEEKLY_SUMMARY:
        return weekly_summary(data)
    if role == "client":
        return client_alert(data)
    return owner_alert(data)
