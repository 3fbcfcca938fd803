import pytest
from fastapi import FastAPI
from fastapi.responses import JSONResponse
from fastapi.testclient import TestClient
from pydantic import ValidationError

from app.routers import players, teams
from app.exceptions import DomainException, ProblemDetail
from app.schemas import PlayerCreate

app = FastAPI()


@app.exception_handler(DomainException)
async def domain_exception_handler(request, exc):
    problem = ProblemDetail(
        type=exc.type,
        title=exc.title,
        detail=exc.detail,
        status=exc.status_code,
        code=exc.code,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=problem.model_dump(),
        media_type="application/problem+json",
    )

app.include_router(teams.router)
app.include_router(players.router)


@pytest.fixture
def client():
    with TestClient(app) as c:
        c.post("/teams", json={"id": "falcons", "name": "Falcons"})
        yield c


def test_player_create_normalizes_fields():
    body = PlayerCreate(name="  Ana   Silva ", role=" ", nickname=" Nana ")

    assert body.name == "Ana Silva"
    assert body.role is None
    assert body.nickname == "Nana"


def test_player_number_must_fit_a_shirt():
    with pytest.raises(ValidationError):
        PlayerCreate(name="Ana", number=120)


def test_create_and_get_player(client):
    resp = client.post(
        "/players",
        json={"name": "Ana", "team_id": "falcons", "number": 7, "role": "l"},
    )
    assert resp.status_code == 200
    pid = resp.json()["id"]
    assert resp.json()["role"] == "L"

    resp = client.get(f"/players/{pid}")
    assert resp.status_code == 200
    assert resp.json()["name"] == "Ana"
    assert resp.json()["number"] == 7


def test_unknown_team_is_rejected(client):
    resp = client.post("/players", json={"name": "Ana", "team_id": "nope"})

    assert resp.status_code == 404


def test_shirt_number_is_unique_per_team(client):
    client.post("/players", json={"name": "Ana", "team_id": "falcons", "number": 7})

    resp = client.post("/players", json={"name": "Bea", "team_id": "falcons", "number": 7})

    assert resp.status_code == 400


def test_list_players_by_team_and_query(client):
    client.post("/teams", json={"id": "hawks", "name": "Hawks"})
    client.post("/players", json={"name": "Ana", "team_id": "falcons", "number": 9})
    client.post("/players", json={"name": "Bea", "team_id": "falcons", "number": 2})
    client.post("/players", json={"name": "Carla", "team_id": "hawks", "number": 1})

    resp = client.get("/players", params={"team": "falcons"})
    data = resp.json()
    assert data["total"] == 2
    assert [p["name"] for p in data["players"]] == ["Bea", "Ana"]

    resp = client.get("/players", params={"q": "car"})
    assert [p["name"] for p in resp.json()["players"]] == ["Carla"]


def test_delete_player_is_soft(client):
    pid = client.post("/players", json={"name": "Ana", "team_id": "falcons"}).json()["id"]

    assert client.delete(f"/players/{pid}").status_code == 204

    resp = client.get(f"/players/{pid}")
    assert resp.status_code == 404
    assert resp.json()["code"] == "player_not_found"
    assert client.get("/players").json()["total"] == 0


def test_duplicate_team_conflicts(client):
    resp = client.post("/teams", json={"id": "falcons", "name": "Falcons"})

    assert resp.status_code == 409
    assert [t["id"] for t in client.get("/teams").json()] == ["falcons"]
