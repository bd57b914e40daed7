# Force SQLModel table registration at test discovery time
from league.models.match import Match  # noqa: F401
from league.models.match_discipline import MatchDiscipline  # noqa: F401
from league.models.stage import Stage, StageGroup  # noqa: F401
from league.models.stage_standing import StageStanding  # noqa: F401
from league.models.team import Team  # noqa: F401
from league.models.tournament import Tournament  # noqa: F401
from league.models.tournament_team import TournamentTeam  # noqa: F401
