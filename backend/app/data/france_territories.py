# app/data/france_territories.py
"""
Muestra mínima de territorios franceses para desarrollo local (SEED_DEMO=true).
Los referenciales completos se cargan con los scripts de import, no desde aquí.
"""

from typing import TypedDict


class RegionSeed(TypedDict):
    code: str
    nom: str


class DepartementSeed(TypedDict):
    code: str
    nom: str
    code_region: str


class CommuneSeed(TypedDict):
    code: str
    nom: str
    siren: str
    code_departement: str
    code_region: str


class GroupementSeed(TypedDict):
    siren: str
    nom: str
    type: str
    code_region: str


class AliasSeed(TypedDict):
    alias: str
    code_officiel: str
    type: str
    source: str


REGIONS: list[RegionSeed] = [
    {"code": "11", "nom": "Île-de-France"},
    {"code": "84", "nom": "Auvergne-Rhône-Alpes"},
    {"code": "53", "nom": "Bretagne"},
]

DEPARTEMENTS: list[DepartementSeed] = [
    {"code": "75", "nom": "Paris", "code_region": "11"},
    {"code": "69", "nom": "Rhône", "code_region": "84"},
    {"code": "38", "nom": "Isère", "code_region": "84"},
    {"code": "29", "nom": "Finistère", "code_region": "53"},
    {"code": "35", "nom": "Ille-et-Vilaine", "code_region": "53"},
]

COMMUNES: list[CommuneSeed] = [
    {"code": "75056", "nom": "Paris", "siren": "217500016", "code_departement": "75", "code_region": "11"},
    {"code": "69123", "nom": "Lyon", "siren": "216901231", "code_departement": "69", "code_region": "84"},
    {"code": "38185", "nom": "Grenoble", "siren": "213801855", "code_departement": "38", "code_region": "84"},
    {"code": "29019", "nom": "Brest", "siren": "212900199", "code_departement": "29", "code_region": "53"},
    {"code": "35238", "nom": "Rennes", "siren": "213502388", "code_departement": "35", "code_region": "53"},
    {"code": "69266", "nom": "Villeurbanne", "siren": "216902661", "code_departement": "69", "code_region": "84"},
    {"code": "69259", "nom": "Vénissieux", "siren": "216902596", "code_departement": "69", "code_region": "84"},
    {"code": "38421", "nom": "Saint-Martin-d'Hères", "siren": "213804219", "code_departement": "38", "code_region": "84"},
    {"code": "29232", "nom": "Quimper", "siren": "212903226", "code_departement": "29", "code_region": "53"},
    {"code": "35288", "nom": "Saint-Malo", "siren": "213502883", "code_departement": "35", "code_region": "53"},
]

GROUPEMENTS: list[GroupementSeed] = [
    {"siren": "200046977", "nom": "Métropole de Lyon", "type": "epci_metropole", "code_region": "84"},
    {"siren": "200040715", "nom": "Grenoble-Alpes Métropole", "type": "epci_metropole", "code_region": "84"},
    {"siren": "242900314", "nom": "Brest Métropole", "type": "epci_metropole", "code_region": "53"},
]

ALIASES: list[AliasSeed] = [
    {"alias": "Grand Lyon", "code_officiel": "200046977", "type": "groupement", "source": "manual"},
    {"alias": "GAM", "code_officiel": "200040715", "type": "groupement", "source": "manual"},
]
