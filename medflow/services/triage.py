from medflow.models.vitals import Triage, TriageLevel, VitalsMeasurements

STABLE_REASON = "Vitals are stable."

RED_SPO2_BELOW = 90
RED_SYSTOLIC_BELOW = 90
YELLOW_RR_ABOVE = 24
YELLOW_PULSE_ABOVE = 120


def _fmt(value: float) -> str:
    """Render 88 and 88.0 the same way so reasons stay byte-identical."""
    if float(value).is_integer():
        return str(int(value))
    return f"{value:g}"


def classify_vitals(measurements: VitalsMeasurements) -> Triage:
    """Derive a triage level from vital-sign thresholds.

    Red conditions are checked first. Yellow conditions only run when no Red
    condition fired, so reasons always come from the tier that set the level.
    """
    reasons: list[str] = []
    level = TriageLevel.GREEN

    if measurements.spo2 is not None and measurements.spo2 < RED_SPO2_BELOW:
        reasons.append(f"Low SpO2 ({_fmt(measurements.spo2)}%)")
        level = TriageLevel.RED
    if measurements.bp_sys is not None and measurements.bp_sys < RED_SYSTOLIC_BELOW:
        reasons.append(f"Low Systolic BP ({_fmt(measurements.bp_sys)} mmHg)")
        level = TriageLevel.RED

    if level != TriageLevel.RED:
        if measurements.rr is not None and measurements.rr > YELLOW_RR_ABOVE:
            reasons.append(f"High Respiratory Rate ({_fmt(measurements.rr)}/min)")
            level = TriageLevel.YELLOW
        if measurements.pulse is not None and measurements.pulse > YELLOW_PULSE_ABOVE:
            reasons.append(f"High Heart Rate ({_fmt(measurements.pulse)} bpm)")
            level = TriageLevel.YELLOW

    if not reasons:
        reasons.append(STABLE_REASON)

    return Triage(level=level, reasons=reasons)
