"""Front door for the renderer host: one call per world plan or avatar spec."""

import logging
from typing import Optional, Union

from .avatar import AvatarAssembler
from .catalog import CatalogResolver
from .fetch import MeshFetcher
from .models import AvatarSpec, WorldPlan, load_avatar_spec, load_world_plan
from .state import AssemblyRequest, AssemblyResult, AssemblyState
from .world import WorldAssembler

logger = logging.getLogger(__name__)


class AssemblyPipeline:
    """Routes documents to the world and avatar assemblers.

    Every call returns an ``AssemblyResult``; expected failures end up in
    its ``errors``/``warnings``. Running out of memory marks the request
    ``failed`` and returns whatever had been built.
    """

    def __init__(self, fetcher: Optional[MeshFetcher] = None,
                 world_resolver: Optional[CatalogResolver] = None,
                 avatar_resolver: Optional[CatalogResolver] = None,
                 z_up: Optional[bool] = None, wide_indices: bool = False):
        self.world = WorldAssembler(world_resolver, wide_indices=wide_indices)
        self.avatar = AvatarAssembler(fetcher, avatar_resolver, z_up=z_up)

    async def assemble_world(self, plan: Union[WorldPlan, str]) -> AssemblyResult:
        if isinstance(plan, str):
            plan = load_world_plan(plan)
        request = AssemblyRequest("world")
        world = None
        try:
            world = await self.world.assemble(plan, request)
        except MemoryError:
            request.fail(f"Out of memory assembling world '{plan.name}'")
            logger.error(f"World '{plan.name}' failed: out of memory")
            world = request.partial
        else:
            request.advance(AssemblyState.done)
        return AssemblyResult.from_request(request, world.root if world else None, world)

    async def assemble_avatar(self, spec: Union[AvatarSpec, str]) -> AssemblyResult:
        if isinstance(spec, str):
            spec = load_avatar_spec(spec)
        request = AssemblyRequest("avatar")
        avatar = None
        try:
            avatar = await self.avatar.assemble(spec, request)
        except MemoryError:
            request.fail(f"Out of memory assembling avatar '{spec.name}'")
            logger.error(f"Avatar '{spec.name}' failed: out of memory")
        else:
            request.advance(AssemblyState.done)
        return AssemblyResult.from_request(request, self.avatar.root, avatar)
