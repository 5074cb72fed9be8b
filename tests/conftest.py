from datetime import date

import pytest

from apps.stages.adapters.memory_gateway import InMemoryStageGateway
from apps.stages.domain.entities import StageEntity, TaskEntity

PROJECT_ID = 7
TODAY = date(2024, 1, 15)


def sample_stages():
    """
    Etap 1: 4 zadania, 1 ukończone (25%)
    Etap 2: 3 zadania, 1 ukończone (33%)
    Etap 3 należy do innego projektu.
    """
    foundations = StageEntity(
        id=1, project_id=PROJECT_ID, name="Fundamenty",
        start_date=date(2024, 1, 1), end_date=date(2024, 1, 31),
        tasks=[
            TaskEntity(id=11, stage_id=1, name="Wykop",
                       start_date=date(2024, 1, 1), expected_end_date=date(2024, 1, 10)),
            TaskEntity(id=12, stage_id=1, name="Zbrojenie",
                       start_date=date(2024, 1, 5), expected_end_date=date(2024, 1, 20)),
            TaskEntity(id=13, stage_id=1, name="Betonowanie",
                       start_date=date(2024, 1, 20), expected_end_date=date(2024, 1, 25)),
            TaskEntity(id=14, stage_id=1, name="Odbiór geodety",
                       start_date=date(2024, 1, 2), expected_end_date=date(2024, 1, 3), is_completed=True),
        ],
    )
    shell = StageEntity(
        id=2, project_id=PROJECT_ID, name="Stan surowy",
        start_date=date(2024, 2, 1), end_date=date(2024, 3, 31),
        tasks=[
            TaskEntity(id=21, stage_id=2, name="Ściany", start_date=date(2024, 2, 1),
                       expected_end_date=date(2024, 2, 28), is_completed=True),
            TaskEntity(id=22, stage_id=2, name="Strop", start_date=date(2024, 3, 1),
                       expected_end_date=date(2024, 3, 15)),
            TaskEntity(id=23, stage_id=2, name="Dach", start_date=date(2024, 3, 10),
                       expected_end_date=date(2024, 3, 31)),
        ],
    )
    other_project = StageEntity(
        id=3, project_id=99, name="Inny projekt",
        tasks=[TaskEntity(id=31, stage_id=3, name="Cudze zadanie")],
    )
    return [foundations, shell, other_project]


@pytest.fixture
def gateway():
    return InMemoryStageGateway(sample_stages())


@pytest.fixture
def today():
    return TODAY
