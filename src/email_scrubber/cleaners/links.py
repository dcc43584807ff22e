"""Link cleaner — strip tracking parameters and unwrap redirectors using ClearURLs rules."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, overload
from urllib.parse import SplitResult

from email_scrubber.cleaners.rules import (
    CompiledProviderRule,
    CompiledRuleSet,
    DiagnosticSink,
    compile_rule_set,
)
from email_scrubber.core.base import (
    ExceptionMode,
    InvalidUrl,
    RedirectionResolutionFailure,
    RuleSet,
)
from email_scrubber.core.urls import EditableUrl, is_absolute_url

logger = logging.getLogger(__name__)

# Redirection hops followed before the current URL is cleaned as-is
MAX_REDIRECT_DEPTH = 10


class LinkCleaner:
    """Clean URLs against a rule set compiled once at construction.

    A cleaner holds only immutable compiled state and can be shared between
    threads and reused for any number of URLs.
    """

    def __init__(
        self,
        rules: RuleSet | Mapping[str, Any],
        *,
        exception_mode: ExceptionMode = ExceptionMode.PARAMETER,
        max_redirect_depth: int = MAX_REDIRECT_DEPTH,
        sink: DiagnosticSink | None = None,
    ) -> None:
        self.rules = rules if isinstance(rules, RuleSet) else RuleSet.model_validate(rules)
        self.exception_mode = ExceptionMode(exception_mode)
        self.max_redirect_depth = max_redirect_depth
        self.compiled: CompiledRuleSet = compile_rule_set(self.rules, sink=sink)

    @overload
    def clean(self, url: str) -> str: ...

    @overload
    def clean(self, url: SplitResult) -> str | SplitResult: ...

    def clean(self, url: str | SplitResult) -> str | SplitResult:
        """Return *url* without tracking parameters, following redirectors.

        Raises InvalidUrl for a string that is not an absolute URL. A
        structured SplitResult that is not one is handed back unchanged;
        an absolute one is cleaned and returned as a string.
        """
        if isinstance(url, SplitResult):
            text = url.geturl()
            if not is_absolute_url(text):
                return url
            return self._clean(text, frozenset())
        return self._clean(url, frozenset())

    def find_provider(self, url: str) -> CompiledProviderRule | None:
        """The specific provider that would handle *url*, ignoring catch-all rules."""
        return self.compiled.find_provider(url)

    def _clean(self, url: str, visited: frozenset[str]) -> str:
        target = EditableUrl(url)

        for provider in self.compiled.global_providers:
            self._strip_params(target, provider)

        provider = self.compiled.find_provider(target.href)
        if provider is None:
            return target.href

        if provider.redirections:
            destination = self._redirect_destination(target, provider)
            if destination is not None:
                try:
                    return self._follow(destination, visited | {target.href})
                except RedirectionResolutionFailure as exc:
                    logger.debug("Not following redirect in %s: %s", target.href, exc)

        self._strip_params(target, provider)
        return target.href

    def _follow(self, destination: str, visited: frozenset[str]) -> str:
        if len(visited) > self.max_redirect_depth:
            raise RedirectionResolutionFailure(
                f"more than {self.max_redirect_depth} redirection hops"
            )
        if destination in visited:
            raise RedirectionResolutionFailure(f"redirection loop back to {destination}")
        try:
            return self._clean(destination, visited)
        except InvalidUrl as exc:
            raise RedirectionResolutionFailure(str(exc)) from exc

    @staticmethod
    def _redirect_destination(target: EditableUrl, provider: CompiledProviderRule) -> str | None:
        # Percent-decoded only; the first non-empty match wins
        for name, value in target.params(plus_as_space=False):
            if value and provider.is_redirection_param(name):
                return value
        return None

    def _strip_params(self, target: EditableUrl, provider: CompiledProviderRule) -> None:
        if not (provider.rules or provider.referral):
            return

        if self.exception_mode is ExceptionMode.URL:
            if provider.is_exception(target.href):
                return
            target.remove_params(provider.is_tracking_param)
            return

        def should_remove(name: str) -> bool:
            return provider.is_tracking_param(name) and not provider.is_exception(name)

        target.remove_params(should_remove)
