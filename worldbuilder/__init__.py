"""WorldBuilder: plan-to-geometry assembly for worlds and avatars."""

from worldbuilder.models import AvatarSpec, WorldPlan, load_avatar_spec, load_world_plan
from worldbuilder.pipeline import AssemblyPipeline
from worldbuilder.state import AssemblyResult, AssemblyState
