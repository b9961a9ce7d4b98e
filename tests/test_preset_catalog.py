"""Tests for the preset catalog and its load-time checks."""

import json

import pytest
from pydantic import ValidationError

from regvault.exceptions import PresetNotFound
from regvault.presets.catalog import (
    PresetCatalog,
    PresetDefinition,
    RequestTemplate,
    default_catalog,
)


def _preset(**overrides) -> dict:
    data = {
        "name": "balance",
        "required_registers": ["wallet_address"],
        "request_template": {
            "method": "get",
            "url_pattern": "https://example.test/addresses/{wallet_address}",
        },
        "result_register": "balance",
    }
    data.update(overrides)
    return data


class TestRequestTemplate:
    def test_method_upper_cased(self):
        template = RequestTemplate(method="post", url_pattern="https://x.test")
        assert template.method == "POST"

    def test_unsupported_method(self):
        with pytest.raises(ValidationError):
            RequestTemplate(method="DELETE", url_pattern="https://x.test")

    def test_referenced_registers_in_first_use_order(self):
        template = RequestTemplate(
            url_pattern="https://x.test/{wallet_address}/{sell_token}",
            query_params={"token": "sell_token", "amount": "sell_amount"},
        )
        assert template.referenced_registers() == ["wallet_address", "sell_token", "sell_amount"]


class TestPresetDefinition:
    def test_valid(self):
        preset = PresetDefinition.model_validate(_preset())
        assert preset.request_template.method == "GET"

    def test_undeclared_placeholder_rejected(self):
        with pytest.raises(ValidationError, match="undeclared"):
            PresetDefinition.model_validate(_preset(required_registers=[]))

    def test_undeclared_query_source_rejected(self):
        data = _preset()
        data["request_template"]["query_params"] = {"amount": "sell_amount"}
        with pytest.raises(ValidationError, match="sell_amount"):
            PresetDefinition.model_validate(data)

    def test_query_and_static_overlap_rejected(self):
        data = _preset()
        data["request_template"]["query_params"] = {"taker": "wallet_address"}
        data["request_template"]["static_params"] = {"taker": "0x0"}
        with pytest.raises(ValidationError, match="both"):
            PresetDefinition.model_validate(data)

    @pytest.mark.parametrize("name", ["Bad", "with-dash", ""])
    def test_invalid_name(self, name):
        with pytest.raises(ValidationError):
            PresetDefinition.model_validate(_preset(name=name))

    def test_invalid_required_key(self):
        with pytest.raises(ValidationError):
            PresetDefinition.model_validate(_preset(required_registers=["wallet_address", "bad key"]))


class TestPresetCatalog:
    def test_require_unknown_lists_available(self):
        catalog = default_catalog()
        with pytest.raises(PresetNotFound) as exc:
            catalog.require("swap_everything")
        assert exc.value.details["available"] == ["swap_price", "swap_quote", "token_balance"]

    def test_duplicate_names_rejected(self):
        with pytest.raises(ValueError, match="already defined"):
            PresetCatalog.from_config([_preset(), _preset()])

    def test_from_file_list_and_object(self, tmp_path):
        as_list = tmp_path / "list.json"
        as_list.write_text(json.dumps([_preset()]))
        as_object = tmp_path / "object.json"
        as_object.write_text(json.dumps({"presets": [_preset()]}))
        assert PresetCatalog.from_file(as_list).names() == ["balance"]
        assert PresetCatalog.from_file(as_object).names() == ["balance"]

    def test_from_file_invalid_json(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{not json")
        with pytest.raises(ValueError, match="Invalid JSON"):
            PresetCatalog.from_file(path)


class TestDefaultCatalog:
    def test_swap_presets(self):
        catalog = default_catalog()
        quote = catalog.require("swap_quote")
        assert quote.required_registers == ["wallet_address", "sell_token", "buy_token", "sell_amount"]
        assert quote.default_filter == "transaction"
        assert quote.result_register == "swap_quote"
        assert quote.request_template.static_params == {"chainId": "8453"}
        assert catalog.require("swap_price").default_filter is None

    def test_token_balance_uses_url_placeholder(self):
        preset = default_catalog().require("token_balance")
        assert "{wallet_address}" in preset.request_template.url_pattern
        assert preset.required_registers == ["wallet_address"]

    def test_describe(self):
        described = default_catalog().describe()
        assert {p["name"] for p in described} == {"swap_price", "swap_quote", "token_balance"}
