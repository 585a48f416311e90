from fastapi import HTTPException, status

from mindwell.services.results import Outcome, OutcomeKind

STATUS_BY_KIND = {
    OutcomeKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    OutcomeKind.CONFLICT: status.HTTP_409_CONFLICT,
    OutcomeKind.INVALID_STATE: status.HTTP_400_BAD_REQUEST,
    OutcomeKind.STORAGE_ERROR: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def unwrap(outcome: Outcome):
    """Value of a successful outcome; anything else becomes an HTTP error."""
    if outcome.ok:
        return outcome.value
    if outcome.kind is OutcomeKind.STORAGE_ERROR:
        # never leak driver messages to clients
        raise HTTPException(status_code=STATUS_BY_KIND[outcome.kind], detail="Serviço temporariamente indisponível")
    raise HTTPException(status_code=STATUS_BY_KIND[outcome.kind], detail=outcome.detail)
