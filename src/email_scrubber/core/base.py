"""Shared models, element contracts and errors for the scrubbing engine."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable
from enum import StrEnum
from typing import Any

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    field_validator,
    model_validator,
)

from email_scrubber.cleaners.trackers import default_tracking_domains, default_tracking_params

# --- Errors ---


class EmailScrubberError(Exception):
    """Base class for every error raised by email_scrubber."""


class InvalidUrl(EmailScrubberError, ValueError):
    """A URL string could not be parsed as an absolute URL."""

    def __init__(self, url: str) -> None:
        super().__init__(f"Invalid URL provided: {url}")
        self.url = url


class RedirectionResolutionFailure(EmailScrubberError):
    """A redirection parameter did not hold a usable URL."""


class RulesLoadError(EmailScrubberError):
    """A rule set could not be read, decoded or validated."""


# --- Rule sets ---


class ExceptionMode(StrEnum):
    """How a provider's `exceptions` patterns veto parameter removal."""

    PARAMETER = "parameter"  # keep only the parameters whose name matches
    URL = "url"  # keep every parameter when the whole URL matches


class ProviderRule(BaseModel):
    """Tracking rules for one provider, in ClearURLs layout."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    url_pattern: str = Field(alias="urlPattern")
    rules: list[str]
    exceptions: list[str] = Field(default_factory=list)
    redirections: list[str] = Field(default_factory=list)
    referral: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("referral", "referralMarketing"),
    )

    @field_validator("exceptions", "redirections", "referral", mode="before")
    @classmethod
    def _none_as_empty(cls, value: Any) -> Any:
        return [] if value is None else value


class RuleSet(BaseModel):
    """Provider key -> rule mapping. Key order is match precedence."""

    model_config = ConfigDict(frozen=True)

    providers: dict[str, ProviderRule] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _accept_bare_mapping(cls, data: Any) -> Any:
        # Accept {"providers": {...}} (ClearURLs file) as well as {key: rule, ...}
        if isinstance(data, dict) and "providers" not in data:
            return {"providers": data}
        return data


class RuleCompilationWarning(BaseModel):
    """A pattern in a rule set that failed to compile. Reported, never raised."""

    provider: str
    field: str
    pattern: str
    error: str


# --- Options and results ---


class TrackerPixelOptions(BaseModel):
    """Tuning for the tracking-pixel classifier. Unset fields keep their defaults."""

    model_config = ConfigDict(frozen=True)

    max_pixel_size: int = Field(default=2, ge=0)  # inclusive, in px
    tracking_domains: frozenset[str] = Field(default_factory=default_tracking_domains)
    tracking_params: frozenset[str] = Field(default_factory=default_tracking_params)
    remove_no_alt_images: bool = True
    remove_transparent_images: bool = True

    @field_validator("tracking_domains", mode="after")
    @classmethod
    def _normalize_domains(cls, value: frozenset[str]) -> frozenset[str]:
        return frozenset(d.strip().lower().lstrip(".") for d in value if d.strip())


class SanitizeOptions(BaseModel):
    """Switches accepted by the buffered and streaming sanitizers."""

    model_config = ConfigDict(frozen=True)

    clean_urls: bool = True
    remove_tracking_pixels: bool = True
    preserve_document_structure: bool = True  # False -> only the <body> contents
    tracker_pixel_options: TrackerPixelOptions = Field(default_factory=TrackerPixelOptions)
    exception_mode: ExceptionMode = ExceptionMode.PARAMETER


class SanitizationResult(BaseModel):
    """Outcome of sanitizing one HTML document."""

    html: str
    urls_cleaned: int = Field(default=0, ge=0)
    tracking_pixels_removed: int = Field(default=0, ge=0)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def was_modified(self) -> bool:
        return self.urls_cleaned > 0 or self.tracking_pixels_removed > 0


# --- Element contracts ---


class SanitizableElement(ABC):
    """The attribute/removal capabilities the cleaners need from an HTML element.

    Implemented over BeautifulSoup tags for buffered documents and over
    start tags for the streaming rewriter.
    """

    @abstractmethod
    def get_attribute(self, name: str) -> str | None: ...

    @abstractmethod
    def has_attribute(self, name: str) -> bool: ...

    @abstractmethod
    def set_attribute(self, name: str, value: str) -> None: ...

    @abstractmethod
    def remove_attribute(self, name: str) -> None: ...

    @abstractmethod
    def remove(self) -> None:
        """Detach the element (and its content) from its parent."""
        ...


class DocumentLike(ABC):
    """A parsed document the pixel remover can walk."""

    @abstractmethod
    def images(self) -> Iterable[SanitizableElement]:
        """Yield every image-like element in document order."""
        ...
