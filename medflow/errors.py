class PatientNotFoundError(LookupError):
    def __init__(self, patient_id: str) -> None:
        super().__init__(f"Patient {patient_id} not found")
        self.patient_id = patient_id


class RecordNotFoundError(LookupError):
    """An order, round or timeline entry id that the patient does not have."""

    def __init__(self, kind: str, record_id: str, patient_id: str) -> None:
        super().__init__(f"{kind} {record_id} not found for patient {patient_id}")
        self.kind = kind
        self.record_id = record_id
        self.patient_id = patient_id


class DuplicatePatientError(ValueError):
    def __init__(self, patient_id: str) -> None:
        super().__init__(f"Patient {patient_id} already exists")
        self.patient_id = patient_id


class InvalidStatusTransitionError(ValueError):
    def __init__(self, patient_id: str, current: str, requested: str) -> None:
        super().__init__(
            f"Patient {patient_id}: cannot move status from '{current}' to '{requested}'"
        )
        self.patient_id = patient_id
        self.current = current
        self.requested = requested


class ImmutableFieldError(ValueError):
    """Raised when an updater tries to change a field that is fixed at creation."""


class UnknownFieldError(ValueError):
    """Raised when a section patch names a field the section does not declare."""

    def __init__(self, section: str, fields: list[str]) -> None:
        super().__init__(f"Unknown field(s) for section '{section}': {', '.join(sorted(fields))}")
        self.section = section
        self.fields = fields


class ClinicalFileSignedError(ValueError):
    def __init__(self, patient_id: str) -> None:
        super().__init__(f"Clinical file for patient {patient_id} is signed and can no longer be edited")
        self.patient_id = patient_id


class UnacknowledgedInconsistenciesError(ValueError):
    """Sign-off attempted while cross-check findings are still open."""

    def __init__(self, patient_id: str, outstanding: list[str]) -> None:
        super().__init__(
            f"Clinical file for patient {patient_id} has {len(outstanding)} unacknowledged inconsistencies"
        )
        self.patient_id = patient_id
        self.outstanding = outstanding


class CrossCheckRequiredError(ValueError):
    def __init__(self, patient_id: str) -> None:
        super().__init__(f"Clinical file for patient {patient_id} has not been cross-checked")
        self.patient_id = patient_id


class AIGenerationError(RuntimeError):
    """An AI-backed generation failed and the clinician must be told."""

    def __init__(self, kind: str, cause: Exception | None = None) -> None:
        message = f"AI generation failed for {kind}"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)
        self.kind = kind
        self.cause = cause


class RoundSignedError(ValueError):
    def __init__(self, round_id: str) -> None:
        super().__init__(f"Round {round_id} is signed and can no longer be edited")
        self.round_id = round_id


class VitalsHistoryError(ValueError):
    """Vitals history may only grow at the head, and the snapshot must match its newest record."""

    def __init__(self, patient_id: str, reason: str) -> None:
        super().__init__(f"Patient {patient_id}: {reason}")
        self.patient_id = patient_id


class InvalidOrderTransitionError(ValueError):
    def __init__(self, order_id: str, current: str, requested: str) -> None:
        super().__init__(f"Order {order_id}: cannot move status from '{current}' to '{requested}'")
        self.order_id = order_id
        self.current = current
        self.requested = requested
