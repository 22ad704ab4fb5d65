"""Browser and discovery data models.

This module defines the Pydantic models describing browser engines, viewports
and the pages and interactive elements found while crawling a site.
"""

from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional
from enum import Enum


class BrowserType(str, Enum):
    """Supported browser engines."""

    CHROMIUM = "chromium"
    FIREFOX = "firefox"
    WEBKIT = "webkit"


class Viewport(BaseModel):
    """Browser viewport configuration."""

    model_config = ConfigDict(frozen=True)

    width: int = Field(default=1280, gt=0, description="Viewport width")
    height: int = Field(default=720, gt=0, description="Viewport height")
    device_scale_factor: float = Field(default=1.0, gt=0, description="Device pixel ratio")
    is_mobile: bool = Field(default=False, description="Mobile viewport")
    has_touch: bool = Field(default=False, description="Touch support")

    @property
    def label(self) -> str:
        """Short label used in artifact names, e.g. ``1280x720``."""
        return f"{self.width}x{self.height}"


class ElementKind(str, Enum):
    """Kind of interactive element."""

    BUTTON = "button"
    LINK = "link"
    INPUT = "input"
    OTHER = "other"


class ElementRole(str, Enum):
    """What an interaction with the element is expected to do."""

    NAVIGATIONAL = "navigational"
    FORM_SUBMIT = "form_submit"
    ACTION = "action"


class UrlOrigin(str, Enum):
    """Origin classification relative to the base URL."""

    INTERNAL = "internal"
    EXTERNAL = "external"


class DiscoveredElement(BaseModel):
    """An interactive element found on a discovered page."""

    model_config = ConfigDict(frozen=True)

    selector: str = Field(description="CSS selector used to locate the element")
    kind: ElementKind = Field(default=ElementKind.OTHER, description="Element kind")
    role: ElementRole = Field(default=ElementRole.ACTION, description="Bounding role")
    tag_name: str = Field(default="", description="Lower-case tag name")
    text: str = Field(default="", description="Visible text (truncated)")
    href: Optional[str] = Field(default=None, description="Link target if any")
    aria_label: Optional[str] = Field(default=None, description="Accessible label")
    disabled: bool = Field(default=False, description="Whether the element is disabled")

    @property
    def descriptor(self) -> str:
        """Human readable descriptor for result names."""
        label = self.aria_label or self.text or self.href or self.selector
        return f"{self.kind.value} '{label[:60]}'"


class DiscoveredButton(DiscoveredElement):
    """A button found on a discovered page."""

    kind: ElementKind = Field(default=ElementKind.BUTTON, description="Element kind")
    button_type: str = Field(default="button", description="submit, button or reset")


class FormField(BaseModel):
    """An input, select or textarea inside a discovered form."""

    model_config = ConfigDict(frozen=True)

    selector: str = Field(description="CSS selector of the field")
    name: str = Field(default="", description="name or id attribute")
    field_type: str = Field(default="text", description="Input type, or select/textarea")
    required: bool = Field(default=False, description="Whether the field is required")
    pattern: Optional[str] = Field(default=None, description="pattern attribute")

    @property
    def label(self) -> str:
        return self.name or self.selector


class DiscoveredForm(BaseModel):
    """A form found on a discovered page."""

    model_config = ConfigDict(frozen=True)

    selector: str = Field(description="CSS selector of the form")
    form_id: str = Field(default="", description="id or name attribute, or its position")
    action: Optional[str] = Field(default=None, description="action attribute")
    method: str = Field(default="get", description="Lower-case submit method")
    fields: List[FormField] = Field(default_factory=list, description="Fields in document order")
    has_submit: bool = Field(default=False, description="Whether the form has a submit control")

    @property
    def descriptor(self) -> str:
        return f"form '{self.form_id or self.selector}'"

    @property
    def required_fields(self) -> List[FormField]:
        return [f for f in self.fields if f.required]


class PageErrors(BaseModel):
    """Console and network errors observed on a page since the last read."""

    console_errors: List[str] = Field(default_factory=list, description="Console errors and uncaught exceptions")
    network_errors: List[str] = Field(default_factory=list, description="Failed requests and responses >= 400")


class DiscoveredPage(BaseModel):
    """A page found during discovery."""

    model_config = ConfigDict(frozen=True)

    url: str = Field(description="URL as it was found")
    normalized_url: str = Field(description="Canonical URL, used as page identity")
    origin: UrlOrigin = Field(default=UrlOrigin.INTERNAL, description="Origin classification")
    depth: int = Field(default=0, ge=0, description="Link depth from the base URL")
    title: str = Field(default="", description="Document title")
    links: List[str] = Field(default_factory=list, description="Normalized links found")
    elements: List[DiscoveredElement] = Field(
        default_factory=list, description="Interactive elements found"
    )
    forms: List[DiscoveredForm] = Field(default_factory=list, description="Forms found")
    discovery_error: Optional[str] = Field(
        default=None, description="Error raised while loading the page during discovery"
    )

    @property
    def buttons(self) -> List[DiscoveredElement]:
        return [e for e in self.elements if e.kind == ElementKind.BUTTON]
