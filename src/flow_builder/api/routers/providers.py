from fastapi import APIRouter, Depends

from flow_builder.api.deps import get_gateway
from flow_builder.api.schemas import ProviderStatus, ProvidersResponse
from flow_builder.llm.gateway import ProviderGateway

router = APIRouter()


@router.get("/providers", response_model=ProvidersResponse)
async def providers(gateway: ProviderGateway = Depends(get_gateway)) -> ProvidersResponse:
    return ProvidersResponse(
        providers=[ProviderStatus(**p) for p in gateway.available_providers()],
        suppressed=gateway.suppression.snapshot(),
    )
