"""Plain-text card key import format and the fixed display templates.

Import blocks are separated by a line of dashes; each block holds
``label：value`` lines (full-width colon)::

    租户URL：https://tenant.example.com
    访问令牌(Token)：tok_123
    邮箱：someone@example.com
    余额查询URL：https://tenant.example.com/balance
    实际到期日：2025-01-01
    查询参数：q=1
    ----------------
"""
import logging
import re
from typing import Dict, Iterable, Iterator, List, Optional

from pydantic import ValidationError

from cardkey_portal.schemas.card_key_schema import CardKey, CardKeyCreate

logger = logging.getLogger(__name__)

BLOCK_DELIMITER = "-" * 16
_DELIMITER_RE = re.compile(r"^[ \t]*-{16,}[ \t]*$", re.MULTILINE)

LABELS = {
    "租户URL：": "tenant_url",
    "访问令牌(Token)：": "access_token",
    "邮箱：": "email",
    "余额查询URL：": "balance_url",
    "实际到期日：": "expiry_date",
    "查询参数：": "query_params",
}
REQUIRED_FIELDS = ("tenant_url", "access_token", "email", "expiry_date", "query_params")


def _parse_block(block: str) -> Optional[CardKeyCreate]:
    fields: Dict[str, str] = {}
    for line in block.splitlines():
        line = line.strip()
        for label, field in LABELS.items():
            if line.startswith(label):
                fields[field] = line[len(label):].strip()
                break

    if not all(fields.get(name) for name in REQUIRED_FIELDS):
        return None
    try:
        return CardKeyCreate(**fields)
    except ValidationError:
        return None


def iter_card_keys(text: str) -> Iterator[CardKeyCreate]:
    """Yield a record for every complete block, in input order.

    Incomplete blocks are skipped silently.
    """
    for block in _DELIMITER_RE.split(text or ""):
        block = block.strip()
        if not block:
            continue
        record = _parse_block(block)
        if record is None:
            logger.debug("Skipping incomplete card key block")
            continue
        yield record


def parse_card_keys_text(text: str) -> List[CardKeyCreate]:
    return list(iter_card_keys(text))


def format_card_key_for_display(card) -> str:
    balance_url = card.balance_url or ""
    return (
        "您的登录信息如下\n"
        f"租户URL：{card.tenant_url}\n"
        f"访问令牌(Token)：{card.access_token}\n"
        f"邮箱：{card.email}\n"
        f"余额查询URL：{balance_url}\n"
        f"实际到期日：{card.expiry_date}"
    )


def card_key_link(base_url: str, secure_token: str) -> str:
    return f"{base_url.rstrip('/')}/api/v1/key/{secure_token}"


def format_unused_links(cards: Iterable[CardKey], base_url: str) -> str:
    return "\n".join(card_key_link(base_url, c.secure_token) for c in cards if not c.is_used)


def format_unused_details(cards: Iterable[CardKey], base_url: str) -> str:
    blocks = []
    unused = [c for c in cards if not c.is_used]
    for index, card in enumerate(unused, start=1):
        blocks.append(
            f"=== 卡密 {index} ===\n"
            f"链接：{card_key_link(base_url, card.secure_token)}\n"
            f"租户URL：{card.tenant_url}\n"
            f"访问令牌：{card.access_token}\n"
            f"邮箱：{card.email}\n"
            f"余额查询URL：{card.balance_url or ''}\n"
            f"实际到期日：{card.expiry_date}\n"
            f"创建时间：{card.created_at.strftime('%Y-%m-%d %H:%M:%S')}\n"
            f"{BLOCK_DELIMITER}"
        )
    return "\n\n".join(blocks)
