import json


def to_timestamped_dump(
    log: list[dict],
    start_time: float,
    call_sid: str,
    phone: str,
    final_state: str,
) -> dict:
    """Build a transcript dump with timestamps relative to call start.

    If start_time is 0, the first entry's timestamp is the base.
    Entries missing a timestamp are skipped.
    """
    base_time = start_time
    if base_time <= 0 and log:
        for entry in log:
            if "timestamp" in entry:
                base_time = entry["timestamp"]
                break

    entries = []
    for entry in log:
        if "timestamp" not in entry:
            continue
        entries.append({
            "t": round(entry["timestamp"] - base_time, 1),
            "role": entry.get("role", ""),
            "state": entry.get("state", ""),
            "content": entry.get("content", ""),
        })

    return {
        "call_sid": call_sid,
        "phone": phone,
        "final_state": final_state,
        "entries": entries,
    }


def dump_line(dump: dict) -> str:
    """One log line carrying the whole dump, greppable by its prefix."""
    return f"TRANSCRIPT_DUMP|{json.dumps(dump)}"
