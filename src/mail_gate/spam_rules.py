# Copyright 2025 Softwell S.r.l. - SPDX-License-Identifier: Apache-2.0
"""Declarative spam heuristics.

Each :class:`SpamRule` pairs a regular expression with the category it
belongs to. The content validator evaluates the rules in order against the
subject and body; the rule list is plain data, injected through
``ValidationConfig.spam_rules`` so deployments can tune or replace it.

Word rules are case-insensitive. Rules that look at letter case itself
(long all-caps runs) are case-sensitive.

All rules are compiled with ``re.ASCII``: word boundaries, ``\\s`` and
case folding only know ASCII, so a non-ASCII letter next to a keyword
("Ñcasino") still counts as a word boundary.
"""

from __future__ import annotations

import re
from dataclasses import dataclass


@dataclass(frozen=True)
class SpamRule:
    """One spam heuristic.

    Attributes:
        pattern: Regular expression source.
        category: Category reported when the pattern matches.
        flags: ``re`` flags used to compile ``pattern``.
    """

    pattern: str
    category: str
    flags: int = re.IGNORECASE

    def compile(self) -> re.Pattern[str]:
        return re.compile(self.pattern, self.flags | re.ASCII)


DEFAULT_SPAM_RULES: tuple[SpamRule, ...] = (
    # Pharmaceutical / health
    SpamRule(r"\b(viagra|cialis|levitra|pharmacy|prescription|pills|medication|weight.?loss|diet.?pills)\b", "pharmaceutical"),
    SpamRule(r"\b(enlargement|enhancement|potency|impotence|erectile)\b", "pharmaceutical"),
    # Financial scams
    SpamRule(r"\b(free money|make money fast|work from home|earn.?\$|quick.?cash|get.?rich)\b", "financial"),
    SpamRule(r"\b(million dollars?|inheritance|beneficiary|offshore|tax.?haven)\b", "financial"),
    SpamRule(r"\b(credit.?repair|debt.?free|consolidate.?debt|refinance.?now)\b", "financial"),
    SpamRule(r"\b(investment.?opportunity|profit.?guarantee|risk.?free|double.?your.?money)\b", "financial"),
    # Gambling
    SpamRule(r"\b(casino|lottery|jackpot|winner|prize|congratulations.?you.?won)\b", "gambling"),
    SpamRule(r"\b(slot.?machine|poker|betting|gambling|odds)\b", "gambling"),
    # Urgency / call to action
    SpamRule(r"\b(buy now|click here|limited time|act now|order now|apply now)\b", "urgency"),
    SpamRule(r"\b(urgent|immediate|expires|don'?t miss|last chance|hurry)\b", "urgency"),
    SpamRule(r"\b(once in a lifetime|exclusive deal|special promotion|limited offer)\b", "urgency"),
    SpamRule(r"\b(call now|subscribe now|sign up now|join now)\b", "urgency"),
    # Adult content
    SpamRule(r"\b(xxx|adult|porn|sex|dating|singles|meet.?women|meet.?men)\b", "adult"),
    SpamRule(r"\b(escort|webcam|live.?chat|hot.?girls)\b", "adult"),
    # Pyramid and advance-fee fraud
    SpamRule(r"\b(mlm|multi.?level|pyramid|ponzi|get.?paid.?to)\b", "fraud"),
    SpamRule(r"\b(nigerian|prince|inheritance|unclaimed|beneficiary)\b", "fraud"),
    SpamRule(r"\b(wire.?transfer|western.?union|money.?gram|bitcoin.?wallet)\b", "fraud"),
    # Too good to be true
    SpamRule(r"\b(100%.?free|completely.?free|no.?cost|no.?fees|no.?obligation)\b", "offer"),
    SpamRule(r"\b(guarantee|certified|approved|verified|authentic)\b", "offer"),
    SpamRule(r"\b(trial|sample|gift|bonus|reward)\b", "offer"),
    # Counterfeit goods
    SpamRule(r"\b(replica|knock.?off|designer.?copy|authentic.?copy|watches)\b", "counterfeit"),
    # SEO and list spam
    SpamRule(r"\b(seo|search.?engine|rank.?first|increase.?traffic)\b", "seo"),
    SpamRule(r"\b(unsubscribe|opt.?out|remove.?me)\b", "seo"),
    # Phishing
    SpamRule(r"\b(verify.?account|confirm.?identity|update.?information|suspended.?account)\b", "phishing"),
    SpamRule(r"\b(security.?alert|unusual.?activity|reset.?password|validate)\b", "phishing"),
    # Suspicious characters
    SpamRule(r"\$\$\$+", "special_chars", 0),
    SpamRule(r"!!+", "special_chars", 0),
    SpamRule(r"\?{3,}", "special_chars", 0),
    SpamRule(r"[A-Z\s]{20,}", "all_caps", 0),
    SpamRule(r"(.)\1{5,}", "repeated_chars", 0),
    # Suspicious numbers
    SpamRule(r"\b\d{3,}-?\d{3,}-?\d{4,}\b", "phone_number", 0),
    SpamRule(r"\$\d{4,}", "money_amount", 0),
)

DEFAULT_URL_SHORTENERS: tuple[str, ...] = ("bit.ly", "tinyurl.com", "goo.gl", "t.co")


__all__ = ["DEFAULT_SPAM_RULES", "DEFAULT_URL_SHORTENERS", "SpamRule"]
