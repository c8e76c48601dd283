# Secret scanner - line-by-line credential detection
import logging
from typing import Dict, List, Optional

from schemas.scan import Finding
from services.patterns import API_KEY_PATTERNS, COMMENT_PREFIXES, FALSE_POSITIVE_TOKENS, PatternRule
from utils.encryption import mask

logger = logging.getLogger(__name__)


class SecretScanner:
    """Applies the registered detection rules to file contents"""

    def __init__(self, rules: Optional[Dict[str, PatternRule]] = None):
        self.rules = rules if rules is not None else API_KEY_PATTERNS

    def detect(self, content: str, path: str) -> List[Finding]:
        """Scan content line by line; line numbers in the output are 1-based"""
        findings = []

        for index, line in enumerate(content.split('\n')):
            if self.should_skip_line(line):
                continue

            try:
                findings.extend(self._scan_line(line, index + 1, path))
            except Exception as e:
                # A bad line is dropped on its own; later lines are unaffected
                logger.warning(f"Skipping {path}:{index + 1}: {type(e).__name__}")

        return findings

    def _scan_line(self, line: str, line_number: int, path: str) -> List[Finding]:
        results = []
        for service, rule in self.rules.items():
            for match in rule.regex.finditer(line):
                value = match.group(rule.value_group)
                if not value or not rule.is_valid(value):
                    continue

                results.append(Finding(
                    service=service,
                    file_path=path,
                    line_number=line_number,
                    severity=rule.severity,
                    description=rule.description,
                    masked_value=mask(value),
                    match=value
                ))
        return results

    @staticmethod
    def should_skip_line(line: str) -> bool:
        """Blank lines, comments and obvious placeholders are never scanned"""
        trimmed = line.strip()
        if not trimmed:
            return True

        if trimmed.startswith(COMMENT_PREFIXES):
            return True

        lowered = trimmed.lower()
        return any(token in lowered for token in FALSE_POSITIVE_TOKENS)
