"""
Tests for input validation
"""
import pytest

from consultation_queue.errors import ValidationError
from consultation_queue.validators import (
    is_blank,
    validate_required_fields,
    validate_email,
    validate_reason,
)


@pytest.mark.unit
class TestRequiredFields:
    """Tests for required fields validation"""

    def test_all_fields_present(self):
        validate_required_fields({'name': 'John', 'email': 'john@example.com'}, ['name', 'email'])

    def test_missing_field_is_named(self):
        with pytest.raises(ValidationError) as exc:
            validate_required_fields({'name': 'John'}, ['name', 'email'])
        assert exc.value.field == 'email'
        assert 'email' in exc.value.message

    def test_whitespace_only_counts_as_missing(self):
        with pytest.raises(ValidationError):
            validate_required_fields({'name': '   '}, ['name'])

    def test_none_counts_as_missing(self):
        assert is_blank(None)
        assert not is_blank('x')


@pytest.mark.unit
class TestEmailValidation:
    """Tests for email validation"""

    def test_valid_email_is_trimmed(self):
        assert validate_email('  jane@x.com ') == 'jane@x.com'

    @pytest.mark.parametrize('value', ['', 'jane', 'jane@', '@x.com', 'jane@x', 'jane doe@x.com'])
    def test_invalid_email(self, value):
        with pytest.raises(ValidationError) as exc:
            validate_email(value)
        assert exc.value.field == 'email'


@pytest.mark.unit
class TestReason:

    def test_reason_required(self):
        with pytest.raises(ValidationError):
            validate_reason('  ')

    def test_reason_trimmed(self):
        assert validate_reason(' not available ') == 'not available'
