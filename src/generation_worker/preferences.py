STANDARD_MODELS = ["g2.5-flash", "g2.5-flash-lite", "g2.0-flash"]
ESCALATED_MODELS = ["g2.5-pro", "g2.5-flash", "g2.5-flash-lite", "g2.0-flash"]


def preferred_models(fail_count: int, escalation_fail_count: int = 2) -> list[str]:
    """
    Candidate list for a page, most preferred first.

    Pages that keep failing are tried on the pro model first.
    """
    if fail_count >= escalation_fail_count:
        return list(ESCALATED_MODELS)
    return list(STANDARD_MODELS)
