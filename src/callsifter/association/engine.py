"""Account association: custom rules, domain heuristic, fallback."""

from __future__ import annotations

import logging
import re
from collections import Counter
from typing import Iterable

from callsifter.config import (
    FALLBACK_CONFIDENCE,
    MAX_DOMAIN_CONFIDENCE,
    PERSONAL_EMAIL_DOMAINS,
    RULE_CONFIDENCE,
)
from callsifter.errors import NotFoundError
from callsifter.storage.models import (
    AssociationResult,
    AssociationRule,
    Attendee,
    AuditRecord,
    RuleType,
    Transcript,
)
from callsifter.storage.repository import Repository, utc_iso

log = logging.getLogger(__name__)

DOMAIN_RULE_NAME = "domain-based"
FALLBACK_RULE_NAME = "fallback"
MAX_FALLBACK_SUGGESTIONS = 5

_TITLE_WORD = re.compile(r"^[A-Z]")


def _account_name_from_domain(domain: str) -> str:
    label = domain.split(".")[0]
    return label[:1].upper() + label[1:]


def fallback_domain_key(platform: str, call_id: str) -> str:
    return f"unknown-{platform}-{call_id}"


class AccountAssociationEngine:
    """Assign transcripts to accounts and manage the rules that steer it."""

    def __init__(
        self,
        repo: Repository,
        rules: Iterable[AssociationRule] = (),
        excluded_domains: Iterable[str] = PERSONAL_EMAIL_DOMAINS,
    ):
        self.repo = repo
        self.excluded_domains = frozenset(d.lower() for d in excluded_domains)
        self._rules: list[AssociationRule] = []
        self._patterns: dict[str, re.Pattern | None] = {}
        for rule in rules:
            self.add_custom_rule(rule)

    # ── Rules ──────────────────────────────────────────────────────

    def add_custom_rule(self, rule: AssociationRule):
        """Add a rule, keeping the list sorted by descending priority.

        Rules with equal priority keep their insertion order.
        """
        self._rules.append(rule)
        self._rules.sort(key=lambda r: -r.priority)

    def remove_custom_rule(self, rule_id: str) -> bool:
        before = len(self._rules)
        self._rules = [r for r in self._rules if r.id != rule_id]
        return len(self._rules) < before

    def get_custom_rules(self) -> list[AssociationRule]:
        return list(self._rules)

    def _compile(self, pattern: str) -> re.Pattern | None:
        if pattern not in self._patterns:
            try:
                self._patterns[pattern] = re.compile(pattern, re.IGNORECASE)
            except re.error as e:
                log.warning("Ignoring invalid rule pattern %r: %s", pattern, e)
                self._patterns[pattern] = None
        return self._patterns[pattern]

    def _rule_matches(self, rule: AssociationRule, transcript: Transcript) -> bool:
        call = transcript.call
        if rule.type == RuleType.MANUAL:
            return True
        if not rule.pattern:
            return False
        if rule.type == RuleType.DOMAIN:
            wanted = rule.pattern.strip().lower()
            return any(a.domain == wanted for a in call.attendees)

        regex = self._compile(rule.pattern)
        if regex is None:
            return False
        if rule.type == RuleType.EMAIL_PATTERN:
            return any(regex.search(a.email) for a in call.attendees)
        if rule.type == RuleType.TITLE_PATTERN:
            return bool(regex.search(call.title or ""))
        return False

    def _apply_custom_rules(self, transcript: Transcript) -> AssociationResult | None:
        for rule in self._rules:
            # A rule without a target account is inert
            if not rule.active or rule.account_id is None:
                continue
            if self._rule_matches(rule, transcript):
                log.debug("Rule %s matched %s/%s", rule.name, transcript.platform, transcript.call_id)
                return AssociationResult(
                    account_id=rule.account_id,
                    confidence=RULE_CONFIDENCE[rule.type],
                    rule_name=rule.name,
                )
        return None

    # ── Association ────────────────────────────────────────────────

    def determine_account_association(self, transcript: Transcript) -> AssociationResult:
        """Resolve the account for a transcript, creating one if needed.

        Order: active custom rules by priority, then the dominant external
        attendee domain, then a per-call placeholder account.
        """
        result = self._apply_custom_rules(transcript)
        if result is None:
            result = self._apply_domain_heuristic(transcript)
        if result is None:
            result = self._apply_fallback(transcript)
        log.info(
            "Associated %s/%s with account %s (%s, %.2f)",
            transcript.platform, transcript.call_id,
            result.account_id, result.rule_name, result.confidence,
        )
        return result

    def external_domains(self, attendees: Iterable[Attendee]) -> list[str]:
        """Attendee domains not on the exclusion list, one entry per attendee."""
        return [
            a.domain for a in attendees
            if a.domain and a.domain not in self.excluded_domains
        ]

    def _apply_domain_heuristic(self, transcript: Transcript) -> AssociationResult | None:
        call = transcript.call
        domains = self.external_domains(call.attendees)
        if not domains:
            return None

        counts = Counter(domains)
        # Counter preserves first-seen order, and max() keeps the first of equal counts
        primary = max(counts, key=lambda d: counts[d])
        confidence = min(MAX_DOMAIN_CONFIDENCE, counts[primary] / len(domains) + 0.3)

        company = next(
            (a.company for a in call.attendees if a.domain == primary and a.company),
            None,
        )
        account, created = self.repo.get_or_create_account(
            company or _account_name_from_domain(primary),
            primary,
            {
                "source": "auto-created",
                "firstCallId": call.id,
                "platform": call.platform,
                "createdFromDomain": primary,
            },
        )
        if created:
            log.info("Created account %s for domain %s", account.name, primary)

        return AssociationResult(
            account_id=account.id,
            confidence=confidence,
            rule_name=DOMAIN_RULE_NAME,
            suggestions=[d for d in counts if d != primary],
        )

    def _apply_fallback(self, transcript: Transcript) -> AssociationResult:
        call = transcript.call
        account, _ = self.repo.get_or_create_account(
            f"Unknown ({call.id})",
            fallback_domain_key(call.platform, call.id),
            {
                "source": "fallback",
                "callId": call.id,
                "platform": call.platform,
                "needsReview": True,
            },
        )
        return AssociationResult(
            account_id=account.id,
            confidence=FALLBACK_CONFIDENCE,
            rule_name=FALLBACK_RULE_NAME,
            suggestions=self._fallback_suggestions(transcript),
        )

    def _fallback_suggestions(self, transcript: Transcript) -> list[str]:
        candidates = [a.company for a in transcript.call.attendees if a.company]
        candidates += [
            word for word in (transcript.call.title or "").split()
            if len(word) > 2 and _TITLE_WORD.match(word)
        ]
        return list(dict.fromkeys(candidates))[:MAX_FALLBACK_SUGGESTIONS]

    # ── Review ─────────────────────────────────────────────────────

    def reassociate_transcript(
        self,
        transcript_id: int,
        new_account_id: int,
        reason: str,
        actor: str = "system",
    ) -> AuditRecord:
        """Point a transcript at another account and record the change."""
        transcript = self.repo.get_transcript_by_id(transcript_id)
        if transcript is None:
            raise NotFoundError(f"Transcript {transcript_id} not found")
        if self.repo.get_account_by_id(new_account_id) is None:
            raise NotFoundError(f"Account {new_account_id} not found")

        record = AuditRecord(
            transcript_id=transcript_id,
            old_account_id=transcript["account_id"],
            new_account_id=new_account_id,
            reason=reason,
            actor=actor,
            timestamp=utc_iso(),
        )
        self.repo.reassign_transcript(record)
        log.info(
            "Transcript %s reassociated from %s to %s by %s: %s",
            transcript_id, record.old_account_id, new_account_id, actor, reason,
        )
        return record

    def get_account_suggestions(self, transcript_id: int) -> dict:
        """Existing accounts matching the transcript's external attendee domains.

        The current account is left out; suggestions are ordered by the
        share of external attendees from each domain.
        """
        transcript = self.repo.get_transcript_by_id(transcript_id)
        if transcript is None:
            raise NotFoundError(f"Transcript {transcript_id} not found")

        attendees = [Attendee(**a) for a in transcript["attendees"]]
        domains = self.external_domains(attendees)
        counts = Counter(domains)

        suggestions = []
        for domain, count in counts.items():
            account = self.repo.get_account_by_domain(domain)
            if account is None or account.id == transcript["account_id"]:
                continue
            suggestions.append({
                "account_id": account.id,
                "account_name": account.name,
                "confidence": round(min(MAX_DOMAIN_CONFIDENCE, count / len(domains) + 0.3), 2),
                "reason": f"{count} attendee(s) from {domain}",
            })
        suggestions.sort(key=lambda s: -s["confidence"])

        return {
            "current_account_id": transcript["account_id"],
            "suggestions": suggestions,
        }
