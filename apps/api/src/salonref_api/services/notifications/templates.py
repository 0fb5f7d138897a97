"""Notification templates for referral program events."""

from __future__ import annotations

import html
from dataclasses import dataclass


@dataclass
class RenderedTemplate:
    subject: str
    text_body: str
    html_body: str


def format_money(amount_cents: int, currency: str) -> str:
    symbols = {"USD": "$", "EUR": "€", "GBP": "£"}
    symbol = symbols.get(currency.upper(), "")
    numeric = f"{amount_cents / 100:.2f}"
    return f"{symbol}{numeric}" if symbol else f"{numeric} {currency.upper()}"


def _greeting(name: str | None) -> str:
    return f"Hi {name}," if name else "Hi there,"


def render_referral_code(
    *,
    given_name: str | None,
    personal_code: str,
    referral_url: str,
    friend_reward: str,
    organization: str,
) -> RenderedTemplate:
    subject = f"Your {organization} referral code: {personal_code}"
    text_body = "\n".join(
        [
            _greeting(given_name),
            "",
            "Thank you for your visit! You can now share the love.",
            f"Your personal referral code is {personal_code}.",
            f"Friends who book with it get {friend_reward} on their first visit,",
            f"and you get {friend_reward} when they do.",
            "",
            f"Share your link: {referral_url}",
            "",
            f"The {organization} Team",
        ]
    )
    safe_name = html.escape(given_name) if given_name else "there"
    html_body = f"""<html>
  <body>
    <p>Hi {safe_name},</p>
    <p>Thank you for your visit! You can now share the love.</p>
    <p>Your personal referral code is <strong>{html.escape(personal_code)}</strong>.</p>
    <p>Friends who book with it get {friend_reward} on their first visit, and you get {friend_reward} when they do.</p>
    <p><a href="{html.escape(referral_url, quote=True)}">Share your referral link</a></p>
    <p>The {html.escape(organization)} Team</p>
  </body>
</html>"""
    return RenderedTemplate(subject=subject, text_body=text_body, html_body=html_body)


def render_gift_card_reward(
    *,
    given_name: str | None,
    amount: str,
    gift_card_gan: str | None,
    wallet_url: str | None,
    is_referrer_reward: bool,
    organization: str,
) -> RenderedTemplate:
    if is_referrer_reward:
        subject = f"You earned {amount} for referring a friend"
        reason = "Your friend just completed their first visit using your referral code."
    else:
        subject = f"Welcome gift: {amount} from {organization}"
        reason = "Thanks for joining us through a friend's referral."

    lines = [_greeting(given_name), "", reason, f"We added {amount} to your gift card."]
    if gift_card_gan:
        lines.append(f"Gift card number: {gift_card_gan}")
    if wallet_url:
        lines.append(f"Add it to Apple Wallet: {wallet_url}")
    lines.extend(["", f"The {organization} Team"])

    safe_name = html.escape(given_name) if given_name else "there"
    gan_html = f"<p>Gift card number: <strong>{html.escape(gift_card_gan)}</strong></p>" if gift_card_gan else ""
    wallet_html = (
        f'<p><a href="{html.escape(wallet_url, quote=True)}">Add to Apple Wallet</a></p>' if wallet_url else ""
    )
    html_body = f"""<html>
  <body>
    <p>Hi {safe_name},</p>
    <p>{reason}</p>
    <p>We added <strong>{amount}</strong> to your gift card.</p>
    {gan_html}{wallet_html}
    <p>The {html.escape(organization)} Team</p>
  </body>
</html>"""
    return RenderedTemplate(subject=subject, text_body="\n".join(lines), html_body=html_body)


def render_referral_used_alert(
    *,
    referral_code: str,
    referrer_name: str,
    referrer_customer_id: str,
    referred_name: str,
    referred_customer_id: str,
    rewards: list[str],
) -> RenderedTemplate:
    subject = f"Referral code {referral_code} was used"
    lines = [
        f"Referral code: {referral_code}",
        f"Referrer: {referrer_name} ({referrer_customer_id})",
        f"New customer: {referred_name} ({referred_customer_id})",
        "Rewards issued:",
        *[f"- {reward}" for reward in rewards or ["none"]],
    ]
    items = "".join(f"<li>{html.escape(reward)}</li>" for reward in rewards or ["none"])
    html_body = f"""<html>
  <body>
    <p>Referral code <strong>{html.escape(referral_code)}</strong> was used.</p>
    <p>Referrer: {html.escape(referrer_name)} ({html.escape(referrer_customer_id)})</p>
    <p>New customer: {html.escape(referred_name)} ({html.escape(referred_customer_id)})</p>
    <ul>{items}</ul>
  </body>
</html>"""
    return RenderedTemplate(subject=subject, text_body="\n".join(lines), html_body=html_body)


def render_referral_code_sms(*, personal_code: str, referral_url: str, organization: str) -> str:
    return f"{organization}: your referral code is {personal_code}. Share {referral_url} and you both get rewarded."
