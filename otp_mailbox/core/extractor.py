"""
Code Extractor - Ordered strategy chain for 6-digit verification codes

Strategies, first match wins:
1. Exact line: a line that is only the 6-digit code
2. Preamble: a known introductory phrase followed by the code
3. Loose: the first standalone 6-digit run anywhere in the body
"""

import logging
import re
from typing import Callable, List, Optional, Sequence, Tuple

from otp_mailbox.models.retrieval import CODE_RE, ExtractionResult, ExtractionStrategy

logger = logging.getLogger(__name__)

DEFAULT_PREAMBLES = (
    "Verifica tu correo",
    "Código de verificación",
    "verification code is",
    "your code is",
)

_LOOSE_RE = re.compile(r"\b([0-9]{6})\b", re.ASCII)

Strategy = Callable[[str], Optional[str]]


def exact_line(body: str) -> Optional[str]:
    for line in body.splitlines():
        candidate = line.strip()
        if CODE_RE.fullmatch(candidate):
            return candidate
    return None


def compile_preambles(phrases: Sequence[str]) -> Optional[re.Pattern]:
    """Build one case-insensitive pattern for all preamble phrases"""
    phrases = [p.strip() for p in phrases if p and p.strip()]
    if not phrases:
        return None
    alternatives = "|".join(re.escape(p) for p in phrases)
    return re.compile(rf"(?:{alternatives})[\s:]*([0-9]{{6}})(?![0-9])", re.IGNORECASE)


def loose(body: str) -> Optional[str]:
    match = _LOOSE_RE.search(body)
    return match.group(1) if match else None


class CodeExtractor:
    """Applies the strategy chain to a message body"""

    def __init__(self, preambles: Sequence[str] = DEFAULT_PREAMBLES):
        self._preamble_re = compile_preambles(preambles)
        self.strategies: List[Tuple[ExtractionStrategy, Strategy]] = [
            (ExtractionStrategy.EXACT_LINE, exact_line),
            (ExtractionStrategy.PREAMBLE, self._preamble),
            (ExtractionStrategy.LOOSE, loose),
        ]

    def _preamble(self, body: str) -> Optional[str]:
        if self._preamble_re is None:
            return None
        match = self._preamble_re.search(body)
        return match.group(1) if match else None

    def extract(self, body: str) -> Optional[ExtractionResult]:
        """
        Recover a code from a message body

        Args:
            body: Message text

        Returns:
            ExtractionResult or None when no strategy matches
        """
        if not body:
            return None
        for strategy, rule in self.strategies:
            code = rule(body)
            if code:
                logger.debug(f"Code found by {strategy.value} strategy")
                return ExtractionResult(code=code, strategy=strategy)
        return None
