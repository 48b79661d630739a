from medbill.models.user import User
from medbill.models.company import Company, Contract
from medbill.models.patient import Patient
from medbill.models.doctor import Doctor
from medbill.models.cie11 import Cie11Code
from medbill.models.service_record import ServiceRecord
from medbill.models.prebill import PreBill

__all__ = ["User", "Company", "Contract", "Patient", "Doctor", "Cie11Code", "ServiceRecord", "PreBill"]
