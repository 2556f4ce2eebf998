"""Tier-aware message formatting for Telegram (HTML parse mode).

``SignalMessage`` is a small builder: each section is added only when the
tier is entitled to it, and ``render()`` joins the sections.
"""

from html import escape
from typing import Optional

from signalhub.models.signal import Signal, SignalStatus
from signalhub.models.subscription import Tier
from signalhub.strategy.models import price_digits

PRIORITY_BADGES = {
    "EXCLUSIVE": "💎 EXCLUSIVE",
    "VIP": "👑 VIP",
    "HIGH": "⭐ HIGH PRIORITY",
    "MEDIUM": "📈 STANDARD",
    "LOW": "📊 BASIC",
}

STATUS_EMOJI = {
    SignalStatus.TP1_HIT: "✅",
    SignalStatus.TP2_HIT: "✅✅",
    SignalStatus.TP3_HIT: "✅✅✅",
    SignalStatus.SL_HIT: "❌",
    SignalStatus.CLOSED: "🔒",
    SignalStatus.ACTIVE: "🔔",
}

RISK_FOOTER = "⚠️ <i>Risk management is key. Never risk more than 1-2% per trade.</i>"


def confidence_label(confidence: float) -> str:
    if confidence >= 85:
        return "VERY_HIGH"
    if confidence >= 70:
        return "HIGH"
    if confidence >= 55:
        return "MEDIUM"
    return "LOW"


_CONFIDENCE_EMOJI = {"VERY_HIGH": "🔥🔥🔥", "HIGH": "🔥🔥", "MEDIUM": "🔥", "LOW": "⚡"}


class SignalMessage:
    """Builder for one signal rendered for one tier."""

    def __init__(self, signal: Signal) -> None:
        self._signal = signal
        self._digits = price_digits(signal.symbol)
        self._sections: list[str] = []

    def _price(self, value: float) -> str:
        return f"{value:.{self._digits}f}"

    def header(self) -> "SignalMessage":
        s = self._signal
        emoji = "🟢" if s.direction == "buy" else "🔴"
        badge = PRIORITY_BADGES.get(s.priority.value, PRIORITY_BADGES["MEDIUM"])
        self._sections.append(
            f"{emoji} <b>SIGNALHUB SIGNAL</b> {emoji}\n{badge}\n\n"
            f"📊 <b>{escape(s.symbol)}</b>\n"
            f"📈 Action: <b>{s.direction.upper()}</b>\n"
            f"💰 Entry: <b>{self._price(s.entry_price)}</b>"
        )
        return self

    def levels(self) -> "SignalMessage":
        s = self._signal
        lines = [f"🛑 Stop Loss: <b>{self._price(s.stop_loss)}</b>"]
        for i, tp in enumerate(s.take_profits, start=1):
            lines.append(f"✅ Take Profit {i}: <b>{self._price(tp)}</b>")
        if s.risk_reward:
            lines.append(f"📐 Risk/Reward: <b>1:{s.risk_reward}</b>")
        self._sections.append("\n".join(lines))
        return self

    def analysis(self) -> "SignalMessage":
        if self._signal.analysis:
            self._sections.append(f"📝 <b>Analysis:</b>\n{escape(self._signal.analysis)}")
        return self

    def footer(self) -> "SignalMessage":
        s = self._signal
        label = confidence_label(s.confidence)
        self._sections.append(
            f"⏰ {escape(s.timeframe or 'Multi-TF')} | {_CONFIDENCE_EMOJI[label]} "
            f"{label} Confidence ({s.confidence:.0f}%)"
        )
        self._sections.append(RISK_FOOTER)
        return self

    def render(self) -> str:
        return "\n\n".join(self._sections)


def build_message(signal: Signal, tier: Tier) -> str:
    """Render *signal* with exactly the content *tier* is entitled to."""
    msg = SignalMessage(signal).header()
    if tier.includes_sl_tp:
        msg.levels()
    if tier.includes_analysis:
        msg.analysis()
    return msg.footer().render()


def format_update_message(signal: Signal, status: SignalStatus, result_pips: Optional[float]) -> str:
    """Short follow-up sent to subscribers who received *signal*."""
    emoji = STATUS_EMOJI.get(status, "🔔")
    label = status.value.replace("_", " ").upper()
    lines = [
        f"{emoji} <b>SIGNAL UPDATE</b>",
        f"📊 <b>{escape(signal.symbol)}</b> {signal.direction.upper()} @ "
        f"{signal.entry_price:.{price_digits(signal.symbol)}f}",
        f"Status: <b>{label}</b>",
    ]
    if result_pips is not None:
        sign = "+" if result_pips > 0 else ""
        lines.append(f"Result: <b>{sign}{result_pips:.1f} pips</b>")
    return "\n".join(lines)
