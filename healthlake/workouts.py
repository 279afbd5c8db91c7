import logging
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from healthlake.decoder import decode_file
from healthlake.errors import DecodeError, ParseError
from healthlake.parsers import FileKind, load_json, parse_file
from healthlake.records import UserContext
from healthlake.writer import MetricWriter

logger = logging.getLogger(__name__)

UUID_LENGTH = 36


def workout_id_from_filename(name: str) -> str:
    """Workout identifier from a file name like ``cycling_20251219_<UUID>.hae``.

    The identifier is always the final 36 characters of the name without its
    extension; the workout type may itself contain underscores.
    """
    base = Path(name).name
    if base.endswith(".hae"):
        base = base[: -len(".hae")]
    if len(base) < UUID_LENGTH:
        raise ParseError(f"workout filename format error: {name}")
    candidate = base[-UUID_LENGTH:]
    try:
        uuid.UUID(candidate)
    except ValueError:
        raise ParseError(f"workout filename format error: {name}")
    return candidate


@dataclass
class WorkoutImportResult:
    workout_id: Optional[uuid.UUID] = None
    inserted: bool = False
    route_points: int = 0


class WorkoutImporter:
    """Import one workout file and, when it is new, its route."""

    def __init__(
        self,
        store,
        writer: MetricWriter = None,
        decoder: Callable[[Path], bytes] = decode_file,
        dry_run: bool = False,
    ):
        self.store = store
        self.writer = writer or MetricWriter(store)
        self.decoder = decoder
        self.dry_run = dry_run

    async def import_file(self, path, ctx: UserContext, route_dir=None) -> WorkoutImportResult:
        path = Path(path)
        doc = load_json(self.decoder(path))
        workout = parse_file(FileKind.WORKOUT, doc)

        ident = workout.id or workout_id_from_filename(path.name)
        try:
            workout_id = uuid.UUID(ident)
        except ValueError:
            raise ParseError(f"invalid workout UUID {ident!r} in {path.name}")

        result = WorkoutImportResult(workout_id=workout_id)
        (row,) = workout.to_rows(ctx, workout_id, raw=doc)
        if self.dry_run:
            result.inserted = True
            return result

        result.inserted = await self.store.insert_workout(row)
        if not result.inserted:
            return result

        route_dir = Path(route_dir) if route_dir else path.parent.parent / "Routes"
        # Route files are named by the workout identifier as exported
        route_file = route_dir / f"{ident}.hae"
        if route_file.exists():
            result.route_points = await self.import_route(route_file, workout_id, ctx)
        return result

    async def import_route(self, path: Path, workout_id: uuid.UUID, ctx: UserContext) -> int:
        """Returns inserted route points; a broken route file yields zero."""
        try:
            route = parse_file(FileKind.ROUTE, self.decoder(path))
        except (DecodeError, ParseError) as e:
            logger.warning("Route import failed [%s]: %s", workout_id, e)
            return 0
        rows = route.to_rows(ctx, workout_id)
        if not rows:
            return 0
        written = await self.writer.write_routes(rows)
        return written.inserted
