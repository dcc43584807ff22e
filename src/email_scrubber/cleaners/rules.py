"""Rule compiler — turn a rule set into precompiled, reusable matchers.

Every pattern is compiled exactly once, when a LinkCleaner is built. A bad
pattern never aborts compilation: a broken ``urlPattern`` makes its provider
unselectable, a broken entry in any other list is dropped, and either way a
RuleCompilationWarning goes to the diagnostic sink.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from email_scrubber.core.base import ProviderRule, RuleCompilationWarning, RuleSet

logger = logging.getLogger(__name__)

# Provider keys applied to every URL before provider-specific matching.
# "globalRules" is the name the ClearURLs corpus uses for its catch-all.
GLOBAL_PROVIDER_KEYS = ("*", "globalRules")

DiagnosticSink = Callable[[RuleCompilationWarning], None]


def log_diagnostic(warning: RuleCompilationWarning) -> None:
    """Default sink: report through the module logger."""
    logger.warning(
        "Invalid %s regex for provider %s: %s (%s)",
        warning.field,
        warning.provider,
        warning.pattern,
        warning.error,
    )


def _matches_any(text: str, patterns: Iterable[re.Pattern[str]]) -> bool:
    return any(p.search(text) for p in patterns)


@dataclass(frozen=True)
class CompiledProviderRule:
    """A provider rule with every pattern compiled. Immutable and shareable."""

    key: str
    url_pattern: re.Pattern[str] | None
    rules: tuple[re.Pattern[str], ...] = ()
    exceptions: tuple[re.Pattern[str], ...] = ()
    redirections: tuple[re.Pattern[str], ...] = ()
    referral: tuple[re.Pattern[str], ...] = ()

    def matches_url(self, url: str) -> bool:
        return self.url_pattern is not None and self.url_pattern.search(url) is not None

    def is_tracking_param(self, name: str) -> bool:
        """True if *name* matches a removal pattern (``rules`` or ``referral``)."""
        return _matches_any(name, self.rules) or _matches_any(name, self.referral)

    def is_exception(self, text: str) -> bool:
        return _matches_any(text, self.exceptions)

    def is_redirection_param(self, name: str) -> bool:
        return _matches_any(name, self.redirections)


@dataclass(frozen=True)
class CompiledRuleSet:
    """Compiled providers keyed by identifier, plus the warnings seen while compiling."""

    by_key: Mapping[str, CompiledProviderRule]
    global_providers: tuple[CompiledProviderRule, ...]
    providers: tuple[CompiledProviderRule, ...]
    warnings: tuple[RuleCompilationWarning, ...] = field(default=())

    def get(self, key: str) -> CompiledProviderRule | None:
        return self.by_key.get(key)

    def find_provider(self, url: str) -> CompiledProviderRule | None:
        """First specific provider whose URL pattern matches, in rule-set order."""
        for provider in self.providers:
            if provider.matches_url(url):
                return provider
        return None


class _Compiler:
    def __init__(self, sink: DiagnosticSink) -> None:
        self._sink = sink
        self.warnings: list[RuleCompilationWarning] = []

    def pattern(self, provider: str, field_name: str, source: str) -> re.Pattern[str] | None:
        try:
            return re.compile(source, re.IGNORECASE)
        except (re.error, OverflowError) as exc:
            warning = RuleCompilationWarning(
                provider=provider, field=field_name, pattern=source, error=str(exc)
            )
            self.warnings.append(warning)
            self._sink(warning)
            return None

    def patterns(
        self, provider: str, field_name: str, sources: Iterable[str]
    ) -> tuple[re.Pattern[str], ...]:
        compiled = (self.pattern(provider, field_name, s) for s in sources)
        return tuple(p for p in compiled if p is not None)

    def provider(self, key: str, rule: ProviderRule) -> CompiledProviderRule:
        return CompiledProviderRule(
            key=key,
            url_pattern=self.pattern(key, "urlPattern", rule.url_pattern),
            rules=self.patterns(key, "rules", rule.rules),
            exceptions=self.patterns(key, "exceptions", rule.exceptions),
            redirections=self.patterns(key, "redirections", rule.redirections),
            referral=self.patterns(key, "referral", rule.referral),
        )


def compile_rule_set(rule_set: RuleSet, sink: DiagnosticSink | None = None) -> CompiledRuleSet:
    """Compile every provider of *rule_set*, reporting bad patterns to *sink*."""
    compiler = _Compiler(sink or log_diagnostic)

    by_key: dict[str, CompiledProviderRule] = {}
    global_providers: list[CompiledProviderRule] = []
    providers: list[CompiledProviderRule] = []

    for key, rule in rule_set.providers.items():
        compiled = compiler.provider(key, rule)
        by_key[key] = compiled
        if key in GLOBAL_PROVIDER_KEYS:
            global_providers.append(compiled)
        else:
            providers.append(compiled)

    if compiler.warnings:
        logger.debug(
            "Compiled %d providers with %d invalid patterns",
            len(by_key),
            len(compiler.warnings),
        )

    return CompiledRuleSet(
        by_key=MappingProxyType(by_key),
        global_providers=tuple(global_providers),
        providers=tuple(providers),
        warnings=tuple(compiler.warnings),
    )
