"""
Settings Models — Pydantic schema for the site's settings document.

The document lives at ``config/settings.json`` in the site repository
and is read by the public pages as well, so its keys stay in Portuguese.
Unknown keys are preserved.
"""

from __future__ import annotations

from datetime import date
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


def _current_school_year() -> str:
    year = date.today().year
    return f"{year}/{year + 1}"


class Paroquia(BaseModel):
    """Parish identification shown on the site."""

    model_config = ConfigDict(extra="allow")

    nome: str = "Paróquia de São Paulo"
    secretariado: str = "Secretariado da Catequese"
    ano_catequetico: str = Field(default_factory=_current_school_year)
    data_inicio: str = ""
    data_inicio_formatada: str = ""


class Arquivos(BaseModel):
    """Repository paths of the data files."""

    model_config = ConfigDict(extra="allow")

    dados_principais: str = "data/dados-catequese.xlsx"
    template_export: str = "data/template-export.xlsx"
    logo: str = "assets/images/logo-paroquia.jpg"


class Interface(BaseModel):
    model_config = ConfigDict(extra="allow")

    tema: Literal["claro", "escuro"] = "claro"
    idioma: str = "pt"
    items_por_pagina: int = 50
    auto_backup: bool = True
    backup_intervalo_horas: int = 24


class Exportacao(BaseModel):
    model_config = ConfigDict(extra="allow")

    celula_ano: str = "B8"
    celula_etapa: str = "B6"
    formato_nome: str = "catequistas_filtrado"


class Validacao(BaseModel):
    model_config = ConfigDict(extra="allow")

    campos_obrigatorios: List[str] = Field(
        default_factory=lambda: ["nome", "centro", "etapa", "sala", "horario", "catequistas"]
    )
    formato_data: str = "DD/MM/YYYY"
    idade_minima: int = 6
    idade_maxima: int = 99


class GitHubSettings(BaseModel):
    model_config = ConfigDict(extra="allow")

    repository: str = ""
    branch: str = "main"
    token: Optional[str] = None


class Settings(BaseModel):
    """The whole settings document."""

    model_config = ConfigDict(extra="allow")

    paroquia: Paroquia = Field(default_factory=Paroquia)
    arquivos: Arquivos = Field(default_factory=Arquivos)
    interface: Interface = Field(default_factory=Interface)
    exportacao: Exportacao = Field(default_factory=Exportacao)
    validacao: Validacao = Field(default_factory=Validacao)
    github: GitHubSettings = Field(default_factory=GitHubSettings)


def default_settings(repository: str = "", branch: str = "main") -> Dict[str, Any]:
    """Default settings document as a plain dict."""
    settings = Settings(github=GitHubSettings(repository=repository, branch=branch))
    return settings.model_dump(exclude_none=True)
