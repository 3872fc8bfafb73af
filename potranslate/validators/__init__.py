from .plural_forms import (
    plural_forms_header,
    required_form_count,
    validate_plural_forms,
)

__all__ = ["plural_forms_header", "required_form_count", "validate_plural_forms"]
