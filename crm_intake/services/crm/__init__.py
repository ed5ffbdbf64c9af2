from crm_intake.services.crm.attio import AttioClient
from crm_intake.services.crm.base import CrmApiError, CrmRegistry, RecordRef

__all__ = ["AttioClient", "CrmApiError", "CrmRegistry", "RecordRef"]
