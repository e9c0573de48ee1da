from typing import Optional, Any
import logging
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from clinic_scheduler import models


class ComplianceLogger:
	"""Compliance logger that records scheduling events in the AuditLog table.

	Rows are added to the caller's session so they commit (or roll back)
	together with the change they describe.
	"""

	def __init__(self, institution_id: str = 'DR-ATUL-CLINIC'):
		self.institution_id = institution_id
		self.logger = logging.getLogger(__name__)

	def log_event(
		self,
		db: Session,
		action: str,
		category: str,
		details: Optional[str] = None,
		severity: str = 'INFO',
		resource_type: Optional[str] = None,
		resource_id: Optional[Any] = None,
		username: Optional[str] = None,
		**_: Any
	) -> None:
		"""Adds an AuditLog row. Never raises; audit failures are logged only."""
		action_upper = (action or '').upper()
		if action_upper in models.AuditAction.__members__:
			action_db = models.AuditAction[action_upper]
		elif action_upper.endswith('_CREATE') or action_upper.startswith('CREATE_'):
			action_db = models.AuditAction.CREATE
		elif action_upper.endswith('_DELETE') or action_upper.startswith('DELETE_'):
			action_db = models.AuditAction.DELETE
		elif 'BULK' in action_upper or 'CASCADE' in action_upper or 'SWEEP' in action_upper:
			action_db = models.AuditAction.BULK_ACTION
		elif action_upper.endswith('_READ'):
			action_db = models.AuditAction.READ
		else:
			# Status changes, reschedules and schedule edits
			action_db = models.AuditAction.UPDATE

		try:
			db.add(models.AuditLog(
				username=username or 'System',
				action=action_db,
				category=category or 'GENERAL',
				severity=severity or 'INFO',
				resource_type=resource_type,
				resource_id=str(resource_id) if resource_id is not None else None,
				details=details,
			))
		except SQLAlchemyError as e:
			self.logger.error(f"Failed to record compliance event {action}: {e}")


# Singleton instance for global import
compliance_logger = ComplianceLogger()
