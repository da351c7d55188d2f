"""Prompt construction for the diagnosis provider."""

from __future__ import annotations

from fleetsim.models.diagnosis import DiagnosisContext

SYSTEM_PROMPT = """
You are an expert mechanic specialised in public transport vehicles (buses),
with more than 20 years of experience diagnosing mechanical and electrical faults.

Analyse IoT sensor data and provide:
1. Precise, understandable diagnoses
2. Actionable, prioritised recommendations
3. A realistic severity assessment

Rules:
- Be specific and technical but understandable
- Prioritise driver and passenger safety
- Consider the public transport context (vehicles cannot stop indefinitely)
- Do not invent data you were not given
- Answer ONLY with valid JSON

RESPONSE FORMAT (JSON):
{
  "diagnosis": "Detailed description of the problem",
  "recommendations": ["First action", "Second action", "Third action"],
  "severity": "low|medium|high|critical"
}

SEVERITY LEVELS:
- low: minor issue, can wait for the next scheduled maintenance
- medium: needs attention soon, schedule an inspection within 1-3 days
- high: urgent, inspect within 24 hours
- critical: immediate danger, stop the vehicle and do not operate until repaired
""".strip()


def build_prompt(context: DiagnosisContext) -> str:
    """Render the user message for *context*."""
    sample = context.current_telemetry
    lines = [
        "Analyse the following alert from a public transport vehicle:",
        "",
        f"VEHICLE: {context.vehicle_id}",
        f"ALERT TYPE: {context.alert_type}",
        f"TIMESTAMP: {context.timestamp.isoformat()}",
        "",
        "CURRENT DATA:",
        f"- RPM: {sample.rpm}",
        f"- Speed: {sample.speed} km/h",
        f"- Engine temperature: {sample.engine_temp_c}°C",
        f"- Battery voltage: {sample.battery_voltage}V",
        f"- Fuel level: {sample.fuel_level_percent}%",
        f"- Brake status: {sample.brake_status}",
    ]
    if sample.dtc_codes:
        lines.append(f"- DTC codes: {', '.join(sample.dtc_codes)}")

    history = context.recent_history or ()
    if history:
        lines += ["", f"RECENT HISTORY (last {len(history)} readings):"]
        for past in history:
            lines.append(
                f"  {past.timestamp.strftime('%H:%M:%S')}: "
                f"Temp={past.engine_temp_c}°C, RPM={past.rpm}, Speed={past.speed}km/h, "
                f"Battery={past.battery_voltage}V"
            )

    lines += [
        "",
        "Provide a professional diagnosis as JSON with:",
        "1. diagnosis: detailed explanation of the problem",
        "2. recommendations: array of specific, actionable recommendations",
        "3. severity: severity level (low, medium, high, critical)",
        "",
        "Answer ONLY with valid JSON, no additional text.",
    ]
    return "\n".join(lines)
