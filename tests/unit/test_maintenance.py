import asyncio
import importlib
import json
import sys

import config
import maintenance
from database import COURSES


async def test_run_migrates_then_cleans_up(db, factory):
    course = await factory.course()
    await factory.user(email="legacy@example.com", purchasedCourses=["python-basics"], courseProgress=[])
    await factory.user(email="lapsed@example.com", expired=[course])

    summary = await maintenance.run(migrate_legacy=True, db=db)

    assert summary["migration"]["entitlementsCreated"] == 1
    assert summary["cleanup"]["accessRevoked"] == 1
    assert (await factory.get(COURSES, course["_id"]))["studentsEnrolled"] == 0


def test_cli_prints_summary(monkeypatch, capsys, db, factory):
    course = asyncio.run(factory.course(studentsEnrolled=1))
    asyncio.run(factory.user(expired=[course]))
    monkeypatch.setattr(maintenance, "connect", lambda: db)
    monkeypatch.setattr(config, "configure_logging", lambda level: None)

    assert maintenance.main([]) == 0

    summary = json.loads(capsys.readouterr().out)
    assert summary["cleanup"]["usersUpdated"] == 1
    assert "migration" not in summary


def test_cli_does_not_build_the_web_app(monkeypatch):
    monkeypatch.delitem(sys.modules, "main")

    importlib.reload(maintenance)

    assert "main" not in sys.modules
