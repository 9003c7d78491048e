from __future__ import annotations

from jinja2 import Environment, StrictUndefined


ROLE_LABELS = {
    "receiver": "📥 Receiver",
    "minter": "🔨 Minter",
    "referral": "🤝 Referral",
    "verifier": "✅ Verifier",
}

TEMPLATES = {
    "connected": (
        "✅ *Successfully Connected!*\n\n"
        "Your Telegram account is now linked to:\n"
        "`{{ wallet_address }}`\n\n"
        "You will receive notifications for:\n"
        "{% for label in role_labels %}{{ label }} Events\n{% endfor %}"
    ),
    "disconnected": (
        "👋 *Wallet Disconnected*\n\n"
        "Your Telegram account is no longer linked to:\n"
        "`{{ wallet_address }}`\n\n"
        "You will not receive further notifications for this wallet."
    ),
    "rewards_deposit": (
        "🎉 *New RewardsDeposit Event* 🎉\n\n"
        "You are the {{ roles | join(' & ') }}\n\n"
        "*Event Details:*\n"
        "- Receiver: `{{ receiver }}`\n"
        "- Minter: `{{ minter }}`\n"
        "- Referral: `{{ referral }}`\n"
        "- Verifier: `{{ verifier }}`\n\n"
        "🔗 [View on Explorer]({{ tx_url }})"
    ),
    "daily_claim": (
        "🎨 *Daily Claim Summary*\n\n"
        "Artist: `{{ artist }}`\n"
        "Claimed today: *{{ quantity }}*"
    ),
}


def _markdown_format(text: str) -> str:
    return text.strip()


class MessageTemplates:
    def __init__(self, templates: dict[str, str] | None = None) -> None:
        self.env = Environment(undefined=StrictUndefined, autoescape=False)
        self.templates = dict(TEMPLATES)
        if templates:
            self.templates.update(templates)

    def render(self, name: str, context: dict[str, object]) -> str:
        if name not in self.templates:
            raise KeyError(f"Template '{name}' is not registered")
        rendered = self.env.from_string(self.templates[name]).render(**context)
        return _markdown_format(rendered)

    def connected(self, wallet_address: str) -> str:
        return self.render("connected", {"wallet_address": wallet_address, "role_labels": list(ROLE_LABELS.values())})

    def disconnected(self, wallet_address: str) -> str:
        return self.render("disconnected", {"wallet_address": wallet_address})

    def rewards_deposit(
        self,
        *,
        roles: list[str],
        receiver: str,
        minter: str,
        referral: str,
        verifier: str,
        tx_url: str,
    ) -> str:
        return self.render(
            "rewards_deposit",
            {
                "roles": [ROLE_LABELS[role] for role in roles],
                "receiver": receiver,
                "minter": minter,
                "referral": referral,
                "verifier": verifier,
                "tx_url": tx_url,
            },
        )

    def daily_claim(self, *, artist: str, quantity: int) -> str:
        return self.render("daily_claim", {"artist": artist, "quantity": quantity})
