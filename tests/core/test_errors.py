"""Tests for the exception hierarchy."""

from cadence.core.errors import ArgumentError, CadenceError, ConfigError, ValidationError


def test_argument_error_is_type_error():
    err = ArgumentError("bad handler", argument="handler")
    assert isinstance(err, CadenceError)
    assert isinstance(err, TypeError)
    assert err.argument == "handler"
    assert str(err) == "bad handler"


def test_validation_error_carries_field():
    err = ValidationError("month out of range", field="month", expected="integer 1-12")
    assert isinstance(err, CadenceError)
    assert isinstance(err, ValueError)
    assert (err.field, err.expected) == ("month", "integer 1-12")
    assert err.details == {}


def test_config_error_details():
    err = ConfigError("nope", details={"path": "x"})
    assert err.message == "nope"
    assert err.details == {"path": "x"}
