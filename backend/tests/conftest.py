import pytest
from fastapi.testclient import TestClient

from app.core.config import Settings
from app.db.models import Alias, Commune, Departement, Groupement, Region
from app.db.session import Base, build_engine, build_session_factory
from app.main import create_app
from app.services.batch.orchestrator import BatchOrchestrator
from app.services.cache import MemoryCache
from app.services.territoires.normalize import normalize_nom
from app.services.territoires.repository import SqlTerritoireRepository

REGIONS = [
    ("11", "Île-de-France"),
    ("84", "Auvergne-Rhône-Alpes"),
    ("75", "Nouvelle-Aquitaine"),
    ("94", "Corse"),
    ("04", "La Réunion"),
]

DEPARTEMENTS = [
    ("75", "Paris", "11"),
    ("69", "Rhône", "84"),
    ("93", "Seine-Saint-Denis", "11"),
    ("33", "Gironde", "75"),
    ("2A", "Corse-du-Sud", "94"),
    ("974", "La Réunion", "04"),
]

COMMUNES = [
    ("75056", "Paris", "217500016", "75", "11"),
    ("69123", "Lyon", "216901231", "69", "84"),
    ("69266", "Villeurbanne", "216902661", "69", "84"),
    ("69259", "Vénissieux", "216902596", "69", "84"),
    ("93066", "Saint-Denis", "219300662", "93", "11"),
    ("97411", "Saint-Denis", "219740115", "974", "04"),
    ("33063", "Bordeaux", "213300635", "33", "75"),
    ("2A004", "Ajaccio", "212000046", "2A", "94"),
]

GROUPEMENTS = [
    ("200046977", "Métropole de Lyon", "epci_metropole", "69", "84"),
    ("243300316", "Bordeaux Métropole", "epci_metropole", "33", "75"),
    ("200054781", "Métropole du Grand Paris", "epci_metropole", "75", "11"),
]


def seed(db):
    db.add_all(Region(code=c, nom=n) for c, n in REGIONS)
    db.flush()
    db.add_all(Departement(code=c, nom=n, code_region=r) for c, n, r in DEPARTEMENTS)
    db.flush()
    db.add_all(
        Commune(code=c, nom=n, siren=s, code_departement=d, code_region=r)
        for c, n, s, d, r in COMMUNES
    )
    db.add_all(
        Groupement(siren=s, nom=n, type=t, code_departement=d, code_region=r)
        for s, n, t, d, r in GROUPEMENTS
    )
    db.add(Alias(
        alias="Grand Lyon",
        alias_norm=normalize_nom("Grand Lyon"),
        code_officiel="200046977",
        type="groupement",
        source="manual",
    ))
    db.commit()


@pytest.fixture
def engine(tmp_path):
    eng = build_engine(f"sqlite:///{tmp_path / 'territoires_test.db'}")
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    factory = build_session_factory(engine)
    db = factory()
    try:
        seed(db)
    finally:
        db.close()
    return factory


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def repo(db):
    return SqlTerritoireRepository(db)


@pytest.fixture
def orchestrator(session_factory):
    return BatchOrchestrator(session_factory, cache=MemoryCache(), concurrency=1)


@pytest.fixture
def test_settings(tmp_path):
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'territoires_test.db'}",
        disable_scheduler=True,
        batch_concurrency=1,
        rate_limit_requests=1000,
        redis_url=None,
    )


@pytest.fixture
def client(engine, session_factory, test_settings):
    app = create_app(
        settings=test_settings,
        engine=engine,
        session_factory=session_factory,
        cache=MemoryCache(),
        start_background=False,
    )
    with TestClient(app) as c:
        yield c
