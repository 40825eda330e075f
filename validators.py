import re

CPF_PATTERN = re.compile(r"^\d{3}\.\d{3}\.\d{3}-\d{2}$")
CNPJ_PATTERN = re.compile(r"^\d{2}\.\d{3}\.\d{3}/\d{4}-\d{2}$")


def is_valid_cpf_format(cpf: str) -> bool:
    """Check the punctuated CPF layout XXX.XXX.XXX-XX (no check-digit math)."""
    return bool(CPF_PATTERN.fullmatch(cpf or ""))


def is_valid_cnpj_format(cnpj: str) -> bool:
    """Check the punctuated CNPJ layout XX.XXX.XXX/XXXX-XX (no check-digit math)."""
    return bool(CNPJ_PATTERN.fullmatch(cnpj or ""))


def clean_document_mask(doc: str) -> str:
    return re.sub(r"\D", "", doc or "")


def national_id_error(role: str, national_id: str):
    """Return an error message when the id does not fit the role, else None."""
    if role == "restaurant":
        if not is_valid_cnpj_format(national_id):
            return "Invalid CNPJ. Use the format XX.XXX.XXX/XXXX-XX"
    elif role == "producer":
        if not (is_valid_cpf_format(national_id) or is_valid_cnpj_format(national_id)):
            return "Invalid CPF or CNPJ. Use XXX.XXX.XXX-XX or XX.XXX.XXX/XXXX-XX"
    elif not is_valid_cpf_format(national_id):
        return "Invalid CPF. Use the format XXX.XXX.XXX-XX"
    return None
