"""
Messaging Gateway
Delivers chat messages and transaction-signing requests through Telegram.

Telegram has no native signing prompt, so a signing request is a message
with an inline button that opens the signing dashboard; the dashboard posts
the wallet's answer back to /api/interaction-response.
"""

import base64
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from telegram import Bot, InlineKeyboardButton, InlineKeyboardMarkup
from telegram.constants import ParseMode
from telegram.error import BadRequest

from config import Config

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InteractionResponse:
    """Wallet answer to a signing request"""
    interaction_id: str
    tx_hash: Optional[str] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return bool(self.tx_hash)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "InteractionResponse":
        """Parse {interactionId, txHash?, error?}; 'id' and 'requestId' are accepted aliases"""
        interaction_id = payload.get("interactionId") or payload.get("id") or payload.get("requestId")
        if not interaction_id:
            raise ValueError("interactionId is required")
        return cls(
            interaction_id=str(interaction_id),
            tx_hash=payload.get("txHash") or None,
            error=payload.get("error") or None,
        )


def encode_interaction_payload(payload: Dict[str, Any]) -> str:
    raw = json.dumps(payload, separators=(",", ":"), sort_keys=True).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def decode_interaction_payload(encoded: str) -> Dict[str, Any]:
    padding = "=" * (-len(encoded) % 4)
    return json.loads(base64.urlsafe_b64decode(encoded + padding).decode("utf-8"))


def to_telegram_markdown(text: str) -> str:
    """Telegram's legacy Markdown marks bold with single asterisks"""
    return text.replace("**", "*")


class MessagingGateway:
    """Interface the orchestration core depends on"""

    async def send_message(self, channel_id: str, text: str) -> Any:
        raise NotImplementedError

    async def send_interaction_request(self, channel_id: str, payload: Dict[str, Any]) -> Any:
        raise NotImplementedError


class TelegramMessagingGateway(MessagingGateway):
    """python-telegram-bot implementation"""

    def __init__(self, bot: Optional[Bot] = None, app_url: Optional[str] = None):
        self.bot = bot or Bot(token=Config.BOT_TOKEN)
        self.app_url = (app_url or Config.APP_URL).rstrip("/")

    async def _send(self, channel_id: str, text: str, reply_markup=None):
        try:
            return await self.bot.send_message(
                chat_id=channel_id,
                text=to_telegram_markdown(text),
                parse_mode=ParseMode.MARKDOWN,
                reply_markup=reply_markup,
            )
        except BadRequest as e:
            # Free-form text (wallet error strings) can break Markdown entity parsing
            if "parse entities" not in str(e).lower():
                raise
            logger.warning(f"⚠️ TELEGRAM_MARKDOWN_REJECTED: chat={channel_id}, resending as plain text")
            return await self.bot.send_message(
                chat_id=channel_id,
                text=text.replace("**", ""),
                reply_markup=reply_markup,
            )

    async def send_message(self, channel_id: str, text: str):
        message = await self._send(channel_id, text)
        logger.info(f"✅ TELEGRAM_SENT: chat={channel_id}")
        return message

    def signing_url(self, payload: Dict[str, Any]) -> str:
        return f"{self.app_url}/sign?request={encode_interaction_payload(payload)}"

    async def send_interaction_request(self, channel_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Post a signing request to the chat.

        Args:
            channel_id: Telegram chat id
            payload: {type: "transaction", id, title, subtitle, tx: {...}, recipient?}

        Returns:
            Acknowledgement with the interaction id and Telegram message id
        """
        lines = [f"**{payload['title']}**", payload.get("subtitle", "")]
        if payload.get("recipient"):
            lines.append(f"Signer: `{payload['recipient']}`")
        lines.append(f"Request: `{payload['id']}`")
        keyboard = InlineKeyboardMarkup([
            [InlineKeyboardButton("✍️ Sign transaction", url=self.signing_url(payload))]
        ])
        message = await self._send(channel_id, "\n\n".join(line for line in lines if line), reply_markup=keyboard)
        logger.info(f"✅ INTERACTION_REQUEST_SENT: chat={channel_id} id={payload['id']}")
        return {"interaction_id": payload["id"], "message_id": getattr(message, "message_id", None)}
