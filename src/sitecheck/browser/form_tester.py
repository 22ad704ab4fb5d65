"""Form testing.

Exercises the forms found during discovery without ever submitting them:
each field must accept input, required fields must be reported invalid when
empty, and the form must validate once filled with plausible data. The form
is reset afterwards so later checks see the page as loaded.
"""

import logging
import time
from typing import Any, Callable, Dict, List, Optional

from ..models.browser_models import DiscoveredForm, DiscoveredPage, FormField
from ..models.config_models import TestConfig
from ..models.result_models import ErrorKind, TestResult, TestStatus, TestType
from ..utils.errors import AssertionFailure, classify_error
from ..utils.helpers import generate_id
from .base import BaseBrowserAutomation

logger = logging.getLogger(__name__)

FORM_INTERACTION = "form-interaction"

# Valid sample values by input type
TEST_DATA: Dict[str, str] = {
    "email": "test@example.com",
    "password": "TestPassword123!",
    "text": "Test input value",
    "name": "Test User",
    "tel": "5551234567",
    "number": "42",
    "url": "https://example.com",
    "search": "search query",
    "date": "2024-01-15",
    "time": "14:30",
    "datetime-local": "2024-01-15T14:30",
    "month": "2024-01",
    "week": "2024-W03",
    "color": "#ff0000",
    "range": "50",
    "textarea": "This is a longer test value for textarea fields.",
}

# Name hints checked before the input type
NAME_HINTS = (
    ("email", "email"),
    ("password", "password"),
    ("phone", "tel"),
    ("tel", "tel"),
    ("name", "name"),
    ("website", "url"),
    ("url", "url"),
)

FILLABLE_TYPES = frozenset(TEST_DATA) - {"name"}
CHECKABLE_TYPES = frozenset({"checkbox", "radio"})
IGNORED_TYPES = frozenset({"hidden", "submit", "button", "reset", "image", "file"})

FORM_VISIBLE_SCRIPT = """
(selector) => {
    const el = document.querySelector(selector);
    if (!el) return false;
    const rect = el.getBoundingClientRect();
    const style = window.getComputedStyle(el);
    return rect.width > 0 && rect.height > 0 &&
        style.visibility !== 'hidden' && style.display !== 'none';
}
"""

FIELD_STATE_SCRIPT = """
(selector) => {
    const el = document.querySelector(selector);
    if (!el) return null;
    return {value: el.value || '', checked: !!el.checked};
}
"""

# Names (or selectors) of the form's fields failing constraint validation
INVALID_FIELDS_SCRIPT = """
(selector) => {
    const form = document.querySelector(selector);
    if (!form) return [];
    return Array.from(form.querySelectorAll(':invalid'))
        .filter(el => el !== form)
        .map(el => el.getAttribute('name') || el.id || el.tagName.toLowerCase());
}
"""

FORM_RESET_SCRIPT = """
(selector) => {
    const form = document.querySelector(selector);
    if (form) form.reset();
}
"""


def sample_value(field: FormField) -> str:
    """Plausible valid value for a field, by name hint first, then type."""
    name = field.name.lower()
    for hint, key in NAME_HINTS:
        if hint in name:
            return TEST_DATA[key]
    return TEST_DATA.get(field.field_type, TEST_DATA["text"])


class FormTester:
    """Exercise the fields and native validation of a page's forms."""

    def __init__(
        self,
        config: TestConfig,
        id_factory: Callable[[], str] = generate_id,
    ):
        self.config = config
        self.id_factory = id_factory

    def _result(
        self,
        page: DiscoveredPage,
        form: DiscoveredForm,
        check: str,
        status: TestStatus,
        started: float,
        engine: str,
        viewport: str,
        selector: Optional[str] = None,
        message: str = "",
        error_kind: Optional[ErrorKind] = None,
        data: Optional[dict] = None,
    ) -> TestResult:
        return TestResult(
            id=self.id_factory(),
            name=f"{FORM_INTERACTION}: {form.descriptor} {check}",
            test_type=TestType.FORM,
            status=status,
            page_url=page.normalized_url,
            engine=engine,
            viewport=viewport,
            element_selector=selector or form.selector,
            duration_ms=int((time.monotonic() - started) * 1000),
            error_kind=error_kind,
            message=message,
            data={"form": form.form_id, **(data or {})},
        )

    def testable_fields(self, form: DiscoveredForm) -> List[FormField]:
        fields = [f for f in form.fields if f.field_type not in IGNORED_TYPES]
        return fields[: self.config.max_elements_per_page]

    async def test_forms(
        self,
        automation: BaseBrowserAutomation,
        page_handle: Any,
        page: DiscoveredPage,
        forms: Optional[List[DiscoveredForm]] = None,
        engine: str = "",
        viewport: str = "",
        on_result: Optional[Callable[[TestResult], None]] = None,
    ) -> List[TestResult]:
        """Test every form of a page.

        Args:
            automation: Browser automation capability
            page_handle: Page already showing ``page``
            page: The discovered page
            forms: Forms to test (defaults to the page's forms)
            engine: Engine label recorded on results
            viewport: Viewport label recorded on results
            on_result: Called with each result as soon as it exists

        Returns:
            Results for every field and form-level check
        """
        forms = page.forms if forms is None else forms
        results: List[TestResult] = []

        def emit(result: TestResult) -> None:
            results.append(result)
            if on_result is not None:
                on_result(result)

        if forms:
            logger.info(f"Testing {len(forms)} forms on {page.normalized_url} ({engine})")
        for form in forms:
            await self._test_form(automation, page_handle, page, form, engine, viewport, emit)
        return results

    async def _test_form(
        self,
        automation: BaseBrowserAutomation,
        page_handle: Any,
        page: DiscoveredPage,
        form: DiscoveredForm,
        engine: str,
        viewport: str,
        emit: Callable[[TestResult], None],
    ) -> None:
        started = time.monotonic()
        try:
            visible = await automation.evaluate(page_handle, FORM_VISIBLE_SCRIPT, form.selector)
        except Exception as e:
            emit(self._failure(page, form, "visibility", e, started, engine, viewport))
            return
        if not visible:
            emit(
                self._result(
                    page, form, "visibility", TestStatus.SKIPPED, started, engine, viewport,
                    message="form is not visible",
                )
            )
            return

        fields = self.testable_fields(form)
        for field in fields:
            emit(await self._test_field(automation, page_handle, page, form, field, engine, viewport))

        if form.required_fields:
            emit(await self._test_required(automation, page_handle, page, form, engine, viewport))
        emit(await self._test_ready(automation, page_handle, page, form, fields, engine, viewport))

        try:
            await automation.evaluate(page_handle, FORM_RESET_SCRIPT, form.selector)
        except Exception as e:
            logger.warning(f"Could not reset {form.descriptor} on {page.normalized_url}: {e}")

    def _failure(self, page, form, check, error, started, engine, viewport, selector=None, data=None):
        kind = classify_error(error)
        status = TestStatus.FAIL if kind == ErrorKind.ASSERTION_FAILURE else TestStatus.ERROR
        logger.warning(f"{form.descriptor} {check} on {page.normalized_url}: {status.value} ({kind.value}) {error}")
        return self._result(
            page, form, check, status, started, engine, viewport, selector, str(error), kind, data
        )

    async def _field_state(self, automation, page_handle, field: FormField) -> Dict[str, Any]:
        state = await automation.evaluate(page_handle, FIELD_STATE_SCRIPT, field.selector)
        return state or {"value": "", "checked": False}

    async def _test_field(
        self,
        automation: BaseBrowserAutomation,
        page_handle: Any,
        page: DiscoveredPage,
        form: DiscoveredForm,
        field: FormField,
        engine: str,
        viewport: str,
    ) -> TestResult:
        started = time.monotonic()
        check = f"field '{field.label}'"
        timeout_ms = self.config.timeout_ms
        data = {"field": field.name, "type": field.field_type}

        if field.field_type not in FILLABLE_TYPES | CHECKABLE_TYPES:
            return self._result(
                page, form, check, TestStatus.SKIPPED, started, engine, viewport, field.selector,
                message=f"{field.field_type} fields are not exercised", data=data,
            )

        try:
            if field.field_type in CHECKABLE_TYPES:
                await automation.click(page_handle, field.selector, timeout_ms)
                state = await self._field_state(automation, page_handle, field)
                if not state.get("checked"):
                    raise AssertionFailure(f"{field.label} did not become checked")
                if field.field_type == "checkbox":
                    await automation.click(page_handle, field.selector, timeout_ms)
            else:
                value = sample_value(field)
                await automation.fill(page_handle, field.selector, value, timeout_ms)
                state = await self._field_state(automation, page_handle, field)
                data["value"] = state.get("value", "")
                if not state.get("value"):
                    raise AssertionFailure(f"{field.label} did not accept input")
                await automation.fill(page_handle, field.selector, "", timeout_ms)
        except Exception as e:
            return self._failure(page, form, check, e, started, engine, viewport, field.selector, data)

        return self._result(
            page, form, check, TestStatus.PASS, started, engine, viewport, field.selector, data=data
        )

    async def _test_required(
        self,
        automation: BaseBrowserAutomation,
        page_handle: Any,
        page: DiscoveredPage,
        form: DiscoveredForm,
        engine: str,
        viewport: str,
    ) -> TestResult:
        """Empty required fields must fail constraint validation."""
        started = time.monotonic()
        required = form.required_fields
        data = {"required": [f.label for f in required]}
        try:
            invalid = await automation.evaluate(page_handle, INVALID_FIELDS_SCRIPT, form.selector)
            data["invalid"] = list(invalid or [])
            if not invalid:
                raise AssertionFailure(
                    f"{len(required)} required fields accepted empty values"
                )
        except Exception as e:
            return self._failure(page, form, "required validation", e, started, engine, viewport, data=data)

        return self._result(
            page, form, "required validation", TestStatus.PASS, started, engine, viewport, data=data
        )

    async def _test_ready(
        self,
        automation: BaseBrowserAutomation,
        page_handle: Any,
        page: DiscoveredPage,
        form: DiscoveredForm,
        fields: List[FormField],
        engine: str,
        viewport: str,
    ) -> TestResult:
        """Filled with sample data the form validates. It is never submitted."""
        started = time.monotonic()
        timeout_ms = self.config.timeout_ms
        data: Dict[str, Any] = {"action": form.action, "method": form.method}
        try:
            for field in fields:
                if field.field_type in FILLABLE_TYPES:
                    await automation.fill(page_handle, field.selector, sample_value(field), timeout_ms)
                elif field.field_type in CHECKABLE_TYPES and field.required:
                    state = await self._field_state(automation, page_handle, field)
                    if not state.get("checked"):
                        await automation.click(page_handle, field.selector, timeout_ms)

            invalid = await automation.evaluate(page_handle, INVALID_FIELDS_SCRIPT, form.selector)
            data["invalid"] = list(invalid or [])
            if invalid:
                raise AssertionFailure(
                    f"fields still invalid with sample data: {', '.join(map(str, invalid))}"
                )
        except Exception as e:
            return self._failure(page, form, "ready to submit", e, started, engine, viewport, data=data)

        return self._result(
            page, form, "ready to submit", TestStatus.PASS, started, engine, viewport, data=data
        )
