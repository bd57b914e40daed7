from league.models.match import Match
from league.models.match_discipline import MatchDiscipline
from league.models.stage import Stage, StageGroup
from league.models.stage_standing import StageStanding
from league.models.team import Team
from league.models.tournament import Tournament
from league.models.tournament_team import TournamentTeam

__all__ = [
    "Team",
    "Tournament",
    "Stage",
    "StageGroup",
    "TournamentTeam",
    "Match",
    "MatchDiscipline",
    "StageStanding",
]
