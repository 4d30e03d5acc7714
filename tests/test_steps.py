"""Tests for the step library."""

import os
import sys

import httpx
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from flowpilot.browser.driver import StepOutcome
from flowpilot.core.errors import (
    CredentialNotFoundError,
    DriverFailureError,
    HttpFailureError,
    InvalidDurationError,
    InvalidValueError,
    MissingFieldError,
    MissingSelectorError,
    StepError,
)
from flowpilot.core.variables import VariableStore
from flowpilot.graph.steps import parse_step
from flowpilot.steps.library import StepLibrary, interpolate_step
from flowpilot.storage.credentials import Credential, CredentialStore


def step(**data):
    data.setdefault("id", "s1")
    return parse_step(data)


@pytest.fixture
def credentials():
    return CredentialStore(credentials=[
        Credential(id="vault", type="username_password", encrypted_values={"username": "ada", "password": "s3cret"}),
    ])


@pytest.fixture
def library(credentials):
    return StepLibrary(credentials=credentials)


@pytest.fixture
def variables():
    return VariableStore({"pid": "42", "host": "example.com"})


class TestInterpolateStep:
    """Test variable substitution into step fields."""

    def test_string_and_header_fields(self, variables):
        """Test string and header fields."""
        original = step(
            type="apiCall",
            url="https://{{host}}/x?id={{pid}}",
            body='{"id": "{{pid}}"}',
            headers={"X-Id": "{{pid}}"},
        )
        resolved = interpolate_step(original, variables)

        assert resolved.url == "https://example.com/x?id=42"
        assert resolved.body == '{"id": "42"}'
        assert resolved.headers == {"X-Id": "42"}
        assert original.url == "https://{{host}}/x?id={{pid}}"

    def test_identity_fields_untouched(self):
        """Test identity fields untouched."""
        variables = VariableStore({"pid": "42"})
        original = step(id="{{pid}}", type="type", selector="#a", credentialId="{{pid}}")
        resolved = interpolate_step(original, variables)

        assert resolved.id == "{{pid}}"
        assert resolved.credential_id == "{{pid}}"


class TestBrowserSteps:
    """Test steps handed to the driver."""

    @pytest.mark.asyncio
    async def test_navigate_interpolated(self, library, variables, scripted_driver):
        """Test navigate interpolated."""
        driver = scripted_driver()
        outcome = await library.dispatch(step(type="navigate", value="https://{{host}}"), driver, variables)

        assert outcome.success
        assert driver.steps[0].url == "https://example.com"

    @pytest.mark.asyncio
    async def test_navigate_requires_url(self, library, variables, scripted_driver):
        """Test navigate requires url."""
        with pytest.raises(MissingFieldError):
            await library.dispatch(step(type="navigate", value=""), scripted_driver(), variables)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("step_type", ["click", "hover", "type", "extract", "extractWithLogic", "selectOption", "fileUpload"])
    async def test_missing_selector(self, library, variables, scripted_driver, step_type):
        """Test missing selector."""
        driver = scripted_driver()
        with pytest.raises(MissingSelectorError) as exc:
            await library.dispatch(step(type=step_type, selector="  "), driver, variables)

        assert exc.value.step_id == "s1"
        assert driver.steps == []

    @pytest.mark.asyncio
    async def test_scroll_rules(self, library, variables, scripted_driver):
        """Test scroll rules."""
        driver = scripted_driver()

        with pytest.raises(MissingSelectorError):
            await library.dispatch(step(type="scroll", scrollType="toElement"), driver, variables)
        with pytest.raises(MissingFieldError):
            await library.dispatch(step(type="scroll", scrollType="byAmount"), driver, variables)

        outcome = await library.dispatch(step(type="scroll", scrollAmount=300), driver, variables)
        assert outcome.success

    @pytest.mark.asyncio
    async def test_select_option_needs_value_or_index(self, library, variables, scripted_driver):
        """Test select option needs value or index."""
        driver = scripted_driver()
        with pytest.raises(MissingFieldError):
            await library.dispatch(step(type="selectOption", selector="#s"), driver, variables)

        await library.dispatch(step(type="selectOption", selector="#s", optionIndex=0), driver, variables)
        assert driver.steps[0].option_index == 0

    @pytest.mark.asyncio
    async def test_file_upload_requires_existing_file(self, library, variables, scripted_driver, tmp_path):
        """Test file upload requires existing file."""
        driver = scripted_driver()
        with pytest.raises(InvalidValueError):
            await library.dispatch(
                step(type="fileUpload", selector="#f", filePath=str(tmp_path / "missing.pdf")),
                driver, variables,
            )

        document = tmp_path / "cv.pdf"
        document.write_bytes(b"%PDF")
        outcome = await library.dispatch(
            step(type="fileUpload", selector="#f", filePath=str(document)),
            driver, variables,
        )
        assert outcome.success

    @pytest.mark.asyncio
    async def test_type_uses_credential_secret(self, library, variables, scripted_driver):
        """Test type uses credential secret."""
        driver = scripted_driver()
        await library.dispatch(
            step(type="type", selector="#pw", value="ignored", credentialId="vault"),
            driver, variables,
        )
        await library.dispatch(
            step(id="s2", type="type", selector="#user", credentialId="vault#username"),
            driver, variables,
        )

        assert [s.text for s in driver.steps] == ["s3cret", "ada"]

    @pytest.mark.asyncio
    async def test_type_unknown_credential(self, library, variables, scripted_driver):
        """Test type unknown credential."""
        with pytest.raises(CredentialNotFoundError):
            await library.dispatch(
                step(type="type", selector="#pw", credentialId="nope"),
                scripted_driver(), variables,
            )

    @pytest.mark.asyncio
    async def test_extract_stores_value(self, library, variables, scripted_driver):
        """Test extract stores value."""
        driver = scripted_driver(values={"#price": "19.99"})
        await library.dispatch(step(type="extract", selector="#price", storeKey="price"), driver, variables)

        assert variables.get("price") == "19.99"

    @pytest.mark.asyncio
    async def test_extract_with_logic_folds_match(self, library, variables, scripted_driver):
        """Test extract with logic folds match."""
        driver = scripted_driver(values={"#price": "19.99"})
        outcome = await library.dispatch(
            step(type="extractWithLogic", selector="#price", condition="lessThan", expectedValue="20"),
            driver, variables,
        )

        assert outcome.data["matched"] is True

    @pytest.mark.asyncio
    async def test_failed_outcome_raises_driver_failure(self, library, variables, scripted_driver):
        """Test failed outcome raises driver failure."""
        driver = scripted_driver(fail_on={"s1"})
        with pytest.raises(DriverFailureError) as exc:
            await library.dispatch(step(type="click", selector="#a"), driver, variables)

        assert exc.value.screenshot == "error.png"
        assert exc.value.step_id == "s1"

    @pytest.mark.asyncio
    async def test_driver_exception_wrapped(self, library, variables, scripted_driver):
        """Test driver exception wrapped."""
        driver = scripted_driver(raise_on={"s1"})
        with pytest.raises(DriverFailureError, match="exploded"):
            await library.dispatch(step(type="click", selector="#a"), driver, variables)

    @pytest.mark.asyncio
    async def test_unregistered_type(self, library, variables, scripted_driver):
        """Test dispatch rejects a step type with no handler."""
        library.unregister("hover")
        assert library.get_handler("hover") is None
        assert "hover" not in library.list_steps()
        with pytest.raises(StepError):
            await library.dispatch(step(type="hover", selector="#a"), scripted_driver(), variables)

    @pytest.mark.asyncio
    async def test_custom_handler(self, library, variables, scripted_driver):
        """Test custom handler."""
        async def fake_click(step, driver, variables):
            return StepOutcome(success=True, data={"custom": True})

        library.register("click", fake_click)
        outcome = await library.dispatch(step(type="click", selector="#a"), scripted_driver(), variables)
        assert outcome.data == {"custom": True}
        assert library.get_handler("click") is fake_click

    def test_builtin_steps_registered(self, library):
        """Test every step type has a builtin handler."""
        assert sorted(library.list_steps()) == sorted([
            "navigate", "click", "hover", "type", "screenshot", "extract",
            "extractWithLogic", "scroll", "selectOption", "fileUpload",
            "wait", "apiCall", "setVariable", "modifyVariable",
        ])


class TestWaitStep:
    """Test wait duration parsing."""

    @pytest.mark.asyncio
    async def test_zero_seconds(self, library, variables, scripted_driver):
        """Test zero-second wait."""
        driver = scripted_driver()
        outcome = await library.dispatch(step(type="wait", value="0"), driver, variables)

        assert outcome.data == {"waited_seconds": 0}
        assert driver.steps == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("value", ["abc", "-1", "1.5", ""])
    async def test_invalid_duration(self, library, variables, scripted_driver, value):
        """Test invalid duration."""
        with pytest.raises(InvalidDurationError):
            await library.dispatch(step(type="wait", value=value), scripted_driver(), variables)


class TestApiCallStep:
    """Test outbound HTTP through a mock transport."""

    @pytest.fixture
    def requests(self):
        return []

    def make_library(self, requests, status=200, text='{"ok": true}'):
        def handler(request):
            requests.append(request)
            return httpx.Response(status, text=text)

        return StepLibrary(http_transport=httpx.MockTransport(handler))

    @pytest.mark.asyncio
    async def test_url_interpolated(self, requests, variables, scripted_driver):
        """Test url interpolated."""
        library = self.make_library(requests)
        driver = scripted_driver()

        outcome = await library.dispatch(
            step(type="apiCall", method="GET", url="https://api/x?id={{pid}}"),
            driver, variables,
        )

        assert str(requests[0].url) == "https://api/x?id=42"
        assert outcome.data["status_code"] == 200
        assert driver.steps == []

    @pytest.mark.asyncio
    async def test_post_body_headers_and_store(self, requests, variables, scripted_driver):
        """Test post body headers and store."""
        library = self.make_library(requests, text="created")

        await library.dispatch(
            step(
                type="apiCall",
                method="post",
                url="https://api/items",
                body='{"pid": "{{pid}}"}',
                headers={"X-Pid": "{{pid}}"},
                storeKey="response",
            ),
            scripted_driver(), variables,
        )

        request = requests[0]
        assert request.method == "POST"
        assert request.content == b'{"pid": "42"}'
        assert request.headers["X-Pid"] == "42"
        assert variables.get("response") == "created"

    @pytest.mark.asyncio
    async def test_non_2xx_fails(self, requests, variables, scripted_driver):
        """Test non-2xx status fails the step."""
        library = self.make_library(requests, status=503, text="down")

        with pytest.raises(HttpFailureError) as exc:
            await library.dispatch(
                step(type="apiCall", url="https://api/x", storeKey="response"),
                scripted_driver(), variables,
            )

        assert exc.value.status_code == 503
        assert variables.get("response") is None

    @pytest.mark.asyncio
    async def test_transport_error(self, variables, scripted_driver):
        """Test transport error."""
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        library = StepLibrary(http_transport=httpx.MockTransport(handler))
        with pytest.raises(HttpFailureError):
            await library.dispatch(step(type="apiCall", url="https://api/x"), scripted_driver(), variables)

    @pytest.mark.asyncio
    async def test_url_required(self, library, variables, scripted_driver):
        """Test url required."""
        with pytest.raises(MissingFieldError):
            await library.dispatch(step(type="apiCall", url=""), scripted_driver(), variables)


class TestVariableSteps:
    """Test setVariable and modifyVariable."""

    @pytest.mark.asyncio
    async def test_set_variable_interpolates(self, library, variables, scripted_driver):
        """Test set variable interpolates."""
        await library.dispatch(
            step(type="setVariable", variableName="url", value="https://{{host}}/p/{{pid}}"),
            scripted_driver(), variables,
        )
        assert variables.get("url") == "https://example.com/p/42"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("operation,value,expected", [
        ("replace", "7", "7"),
        ("append", "0", "420"),
        ("prepend", "#", "#42"),
        ("increment", "", "43"),
        ("increment", "8", "50"),
        ("decrement", "2", "40"),
        ("decrement", "0.5", "41.5"),
    ])
    async def test_modify_operations(self, library, variables, scripted_driver, operation, value, expected):
        """Test each modifyVariable operation."""
        await library.dispatch(
            step(type="modifyVariable", variableName="pid", operation=operation, value=value),
            scripted_driver(), variables,
        )
        assert variables.get("pid") == expected

    @pytest.mark.asyncio
    async def test_increment_missing_starts_at_zero(self, library, variables, scripted_driver):
        """Test increment missing starts at zero."""
        await library.dispatch(
            step(type="modifyVariable", variableName="counter", operation="increment"),
            scripted_driver(), variables,
        )
        assert variables.get("counter") == "1"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("operation,expected", [
        ("increment", "12345678901234567891"),
        ("decrement", "12345678901234567889"),
    ])
    async def test_large_integers_stay_exact(self, library, scripted_driver, operation, expected):
        """Test integer counters beyond float precision keep every digit."""
        variables = VariableStore({"order": "12345678901234567890"})
        await library.dispatch(
            step(type="modifyVariable", variableName="order", operation=operation, value="1"),
            scripted_driver(), variables,
        )
        assert variables.get("order") == expected

    @pytest.mark.asyncio
    async def test_mixed_float_result_drops_trailing_zero(self, library, scripted_driver):
        """Test an integral float result is stored without a decimal point."""
        variables = VariableStore({"total": "1.5"})
        await library.dispatch(
            step(type="modifyVariable", variableName="total", operation="increment", value="0.5"),
            scripted_driver(), variables,
        )
        assert variables.get("total") == "2"

    @pytest.mark.asyncio
    async def test_increment_non_numeric(self, library, variables, scripted_driver):
        """Test increment non numeric."""
        with pytest.raises(InvalidValueError):
            await library.dispatch(
                step(type="modifyVariable", variableName="host", operation="increment"),
                scripted_driver(), variables,
            )

    @pytest.mark.asyncio
    async def test_variable_name_required(self, library, variables, scripted_driver):
        """Test variable name required."""
        with pytest.raises(MissingFieldError):
            await library.dispatch(step(type="setVariable", value="x"), scripted_driver(), variables)
