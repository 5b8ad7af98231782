"""
Roster — Parse the catechesis spreadsheet into catechumens, classes and catechists.

The parish keeps one workbook: row 1 has the headers, every following
row is a catechumen. Headers vary between years ("Data de Nascimento",
"Nascimento", "Horário"...), so columns are matched by substring,
ignoring case and accents.

A class is the (center, stage, schedule) triple; the catechists cell
lists the class catechists separated by ``|``.

## Usage

    roster = RosterManager()
    roster.load_workbook(Path("dados-catequese.xlsx"))
    roster.get_statistics()
    xlsx_bytes = roster.export_to_excel()
"""

from __future__ import annotations

import io
import json
import logging
import time
import unicodedata
import zipfile
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, BinaryIO, Dict, List, Optional, Sequence, Tuple, Union

import openpyxl
from dateutil import parser as date_parser
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter
from openpyxl.utils.exceptions import InvalidFileException

from ..errors import CorruptedFileError, NotFoundError, ValidationError
from ..persistence.state_file import load_json, save_json
from ..validation import BR_DATE_RE, ISO_DATE_RE

if TYPE_CHECKING:
    from ..github.client import CommitResult, GitHubClient

logger = logging.getLogger(__name__)

DEFAULT_HEADERS = ["Nome", "Nascimento", "Centro", "Etapa", "Sala", "Horário", "Catequistas", "Resultado"]
DEFAULT_JSON_PATH = "data/dados-catequese.json"
NO_RESULT = "Não informado"
REPORT_KINDS = ("general", "catechists", "classes", "results")

# Header substring → field. Checked in order, first match wins, so the
# parents' name columns ("Nome do Pai") are claimed before "nome".
COLUMN_PATTERNS = [
    (("pai",), "father"),
    (("mae",), "mother"),
    (("nome",), "name"),
    (("nascimento", "data"), "birthdate"),
    (("centro",), "center"),
    (("etapa",), "stage"),
    (("sala",), "room"),
    (("horario",), "schedule"),
    (("catequista",), "catechists"),
    (("resultado",), "result"),
    (("telefone",), "phone"),
    (("endereco",), "address"),
]

# Field order of the default export
EXPORT_FIELDS = ["name", "birthdate", "center", "stage", "room", "schedule", "catechists", "result"]


def normalize_header(text: str) -> str:
    """Lowercase, trim and strip accents: ``"Horário "`` → ``"horario"``."""
    decomposed = unicodedata.normalize("NFKD", str(text).strip().lower())
    return "".join(c for c in decomposed if not unicodedata.combining(c))


def clean_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def format_date(value: Any) -> str:
    """Normalise a date cell to ``DD/MM/YYYY``; unparseable text is kept."""
    if value is None or value == "":
        return ""
    if isinstance(value, (datetime, date)):
        return value.strftime("%d/%m/%Y")
    text = clean_value(value)
    if BR_DATE_RE.match(text):
        return text
    if ISO_DATE_RE.match(text):
        return datetime.strptime(text[:10], "%Y-%m-%d").strftime("%d/%m/%Y")
    try:
        return date_parser.parse(text, dayfirst=True).strftime("%d/%m/%Y")
    except (ValueError, OverflowError):
        return text


@dataclass
class Catechumen:
    id: str
    row_number: int
    name: str
    birthdate: str = ""
    center: str = ""
    stage: str = ""
    room: str = ""
    schedule: str = ""
    catechists: str = ""
    result: str = ""
    phone: str = ""
    address: str = ""
    father: str = ""
    mother: str = ""
    additional_data: Dict[str, str] = field(default_factory=dict)

    @property
    def class_key(self) -> str:
        return f"{self.center}_{self.stage}_{self.schedule}"

    @property
    def catechist_names(self) -> List[str]:
        return [n.strip() for n in self.catechists.split("|") if n.strip()]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


EDITABLE_FIELDS = {
    f for f in Catechumen.__dataclass_fields__ if f not in ("id", "row_number")
}


def check_fields(data: Any) -> None:
    """Reject edits whose values cannot be stored, before anything changes."""
    if not isinstance(data, dict):
        raise ValidationError("Dados do catequizando devem ser um objeto")
    for key, value in data.items():
        if key not in EDITABLE_FIELDS or value is None:
            continue
        if key == "additional_data":
            if not isinstance(value, dict):
                raise ValidationError("Deve ser um objeto", field=key)
        elif isinstance(value, bool) or not isinstance(value, (str, int, float)):
            raise ValidationError("Deve ser um texto", field=key)


class RosterManager:
    """In-memory roster built from one workbook."""

    def __init__(self):
        self.headers: List[str] = []
        self.catechumens: List[Catechumen] = []
        self.classes: Dict[str, Dict[str, Any]] = {}
        self.catechists: Dict[str, Dict[str, Any]] = {}
        self.source_name: Optional[str] = None
        self.loaded_at: Optional[str] = None

    # ── Loading ──────────────────────────────────────────────────

    def load_workbook(self, source: Union[bytes, str, Path, BinaryIO], name: Optional[str] = None) -> Dict[str, Any]:
        """
        Read the first sheet of an ``.xlsx`` workbook.

        Returns the statistics of the loaded roster.

        Raises:
            CorruptedFileError: Not a readable workbook, or no header row
        """
        if isinstance(source, bytes):
            handle: Any = io.BytesIO(source)
        else:
            handle = source
        if isinstance(source, (str, Path)):
            name = name or Path(source).name

        try:
            workbook = openpyxl.load_workbook(handle, read_only=True, data_only=True)
        except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError, ValueError) as e:
            raise CorruptedFileError(f"Não foi possível ler a planilha: {e}") from e

        try:
            sheet = workbook.worksheets[0]
            rows = [list(row) for row in sheet.iter_rows(values_only=True)]
        finally:
            workbook.close()

        if not any(cell not in (None, "") for row in rows for cell in row):
            raise CorruptedFileError("A planilha está vazia")

        self.headers = [clean_value(h) for h in rows[0]]
        if not any(self.headers):
            raise CorruptedFileError("A planilha não tem cabeçalhos")

        self.catechumens = self._parse_rows(rows[1:])
        self.source_name = name
        self.loaded_at = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
        self._rebuild()
        logger.info(
            f"Roster loaded: {len(self.catechumens)} catechumens, "
            f"{len(self.classes)} classes, {len(self.catechists)} catechists"
        )
        return self.get_statistics()

    def map_columns(self, headers: Sequence[str]) -> Dict[str, int]:
        """Field name → column index for the recognised headers."""
        mapping: Dict[str, int] = {}
        for index, header in enumerate(headers):
            normalized = normalize_header(header or "")
            if not normalized:
                continue
            for needles, field_name in COLUMN_PATTERNS:
                if any(n in normalized for n in needles):
                    if field_name not in mapping:
                        mapping[field_name] = index
                    break
        return mapping

    def _parse_rows(self, rows: List[List[Any]]) -> List[Catechumen]:
        mapping = self.map_columns(self.headers)
        if "name" not in mapping:
            logger.warning(f"No name column among headers: {self.headers}")
            return []

        mapped = set(mapping.values())
        records = []
        for index, row in enumerate(rows):
            def cell(field_name: str) -> Any:
                col = mapping.get(field_name)
                return row[col] if col is not None and col < len(row) else None

            name = clean_value(cell("name"))
            if not name:
                continue

            values = {f: clean_value(cell(f)) for f in mapping if f not in ("name", "birthdate")}
            extra = {}
            for col, value in enumerate(row):
                if col in mapped or value in (None, ""):
                    continue
                header = self.headers[col] if col < len(self.headers) and self.headers[col] else f"col_{col}"
                extra[header] = clean_value(value)

            records.append(Catechumen(
                id=f"cat_{index + 2}",
                row_number=index + 2,
                name=name,
                birthdate=format_date(cell("birthdate")),
                additional_data=extra,
                **values,
            ))
        return records

    def _rebuild(self) -> None:
        """Recompute classes and catechists from the catechumen list."""
        self.classes = {}
        self.catechists = {}
        for c in self.catechumens:
            key = c.class_key
            klass = self.classes.setdefault(key, {
                "id": key,
                "center": c.center,
                "stage": c.stage,
                "schedule": c.schedule,
                "room": c.room,
                "catechists": [],
                "catechumens": [],
            })
            klass["catechumens"].append(c.id)
            for name in c.catechist_names:
                if name not in klass["catechists"]:
                    klass["catechists"].append(name)
                person = self.catechists.setdefault(name, {"name": name, "classes": [], "catechumens": []})
                if key not in person["classes"]:
                    person["classes"].append(key)
                person["catechumens"].append(c.id)

    # ── Queries ──────────────────────────────────────────────────

    def _by_id(self, catechumen_id: str) -> Catechumen:
        for c in self.catechumens:
            if c.id == catechumen_id:
                return c
        raise NotFoundError("Catecúmeno não encontrado", details={"id": catechumen_id})

    def get_catechumen(self, catechumen_id: str) -> Dict[str, Any]:
        return self._by_id(catechumen_id).to_dict()

    def get_results_distribution(self) -> Dict[str, int]:
        distribution: Dict[str, int] = {}
        for c in self.catechumens:
            key = c.result or NO_RESULT
            distribution[key] = distribution.get(key, 0) + 1
        return distribution

    def get_statistics(self) -> Dict[str, Any]:
        by_center: Dict[str, int] = {}
        for c in self.catechumens:
            if c.center:
                by_center[c.center] = by_center.get(c.center, 0) + 1
        return {
            "total_catechumens": len(self.catechumens),
            "total_catechists": len(self.catechists),
            "total_classes": len(self.classes),
            "centers": sorted({c.center for c in self.catechumens if c.center}),
            "stages": sorted({c.stage for c in self.catechumens if c.stage}),
            "schedules": sorted({c.schedule for c in self.catechumens if c.schedule}),
            "results": self.get_results_distribution(),
            "by_center": by_center,
        }

    # ── Editing ──────────────────────────────────────────────────

    def add_catechumen(self, data: Dict[str, Any]) -> Dict[str, Any]:
        check_fields(data)
        name = clean_value(data.get("name"))
        if not name:
            raise ValidationError("Nome é obrigatório", field="name")
        values = {k: clean_value(v) for k, v in data.items() if k in EDITABLE_FIELDS and k != "additional_data"}
        values["name"] = name
        values["birthdate"] = format_date(values.get("birthdate"))
        c = Catechumen(
            id=f"cat_new_{int(time.time() * 1000)}",
            row_number=len(self.catechumens) + 2,
            additional_data=dict(data.get("additional_data") or {}),
            **values,
        )
        self.catechumens.append(c)
        self._rebuild()
        logger.info(f"Catechumen added: {c.id}")
        return c.to_dict()

    def update_catechumen(self, catechumen_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        c = self._by_id(catechumen_id)
        check_fields(data)
        if "name" in data and not clean_value(data["name"]):
            raise ValidationError("Nome é obrigatório", field="name")
        for key, value in data.items():
            if key not in EDITABLE_FIELDS:
                continue
            if key == "additional_data":
                c.additional_data.update(value or {})
            elif key == "birthdate":
                c.birthdate = format_date(value)
            else:
                setattr(c, key, clean_value(value))
        self._rebuild()
        return c.to_dict()

    def remove_catechumen(self, catechumen_id: str) -> None:
        c = self._by_id(catechumen_id)
        self.catechumens.remove(c)
        self._rebuild()
        logger.info(f"Catechumen removed: {catechumen_id}")

    # ── Reports ──────────────────────────────────────────────────

    def generate_report(self, kind: str = "general") -> Dict[str, Any]:
        if kind not in REPORT_KINDS:
            raise ValidationError(f"Tipo de relatório não suportado: {kind}", field="kind")

        stats = self.get_statistics()
        report: Dict[str, Any] = {
            "kind": kind,
            "generated_at": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        }
        total = len(self.catechumens)
        names = {c.id: c for c in self.catechumens}

        if kind == "general":
            report.update({
                "title": "Relatório Geral da Catequese",
                "summary": {
                    "total_catechumens": stats["total_catechumens"],
                    "total_catechists": stats["total_catechists"],
                    "total_classes": stats["total_classes"],
                    "centers": len(stats["centers"]),
                    "stages": len(stats["stages"]),
                },
                "details": {
                    "centers": stats["centers"],
                    "stages": stats["stages"],
                    "schedules": stats["schedules"],
                    "results": stats["results"],
                },
                "data": [c.to_dict() for c in self.catechumens],
            })

        elif kind == "catechists":
            data = [
                {
                    "name": name,
                    "total_catechumens": len(info["catechumens"]),
                    "classes": list(info["classes"]),
                    "catechumens": [
                        {"name": names[i].name, "center": names[i].center,
                         "stage": names[i].stage, "result": names[i].result}
                        for i in info["catechumens"]
                    ],
                }
                for name, info in sorted(self.catechists.items())
            ]
            report.update({
                "title": "Relatório de Catequistas",
                "summary": {
                    "total_catechists": len(data),
                    "average_per_catechist": round(total / len(data)) if data else 0,
                },
                "data": data,
            })

        elif kind == "classes":
            data = [
                {
                    **{k: v for k, v in klass.items() if k != "catechumens"},
                    "total_catechumens": len(klass["catechumens"]),
                    "catechumens": [
                        {"name": names[i].name, "result": names[i].result, "birthdate": names[i].birthdate}
                        for i in klass["catechumens"]
                    ],
                }
                for klass in self.classes.values()
            ]
            report.update({
                "title": "Relatório de Turmas",
                "summary": {
                    "total_classes": len(data),
                    "average_per_class": round(total / len(data)) if data else 0,
                },
                "data": data,
            })

        else:
            results = stats["results"]
            report.update({
                "title": "Relatório de Resultados",
                "summary": results,
                "details": [
                    {
                        "result": result,
                        "count": count,
                        "percentage": round(count / total * 100) if total else 0,
                        "catechumens": [
                            c.name for c in self.catechumens if (c.result or NO_RESULT) == result
                        ],
                    }
                    for result, count in results.items()
                ],
            })

        return report

    # ── Export ───────────────────────────────────────────────────

    def _extra_headers(self) -> List[str]:
        seen: List[str] = []
        for c in self.catechumens:
            for key in c.additional_data:
                if key not in seen:
                    seen.append(key)
        return seen

    def to_rows(self) -> Tuple[List[str], List[List[str]]]:
        """Header row and data rows of the default export layout."""
        extra = self._extra_headers()
        headers = DEFAULT_HEADERS + extra
        rows = [
            [getattr(c, f) for f in EXPORT_FIELDS] + [c.additional_data.get(h, "") for h in extra]
            for c in self.catechumens
        ]
        return headers, rows

    def export_to_excel(
        self,
        rows: Optional[List[List[Any]]] = None,
        headers: Optional[List[str]] = None,
        sheet_title: str = "Catequese",
    ) -> bytes:
        """Build an ``.xlsx`` with a styled header row. Defaults to the whole roster."""
        if rows is None:
            default_headers, rows = self.to_rows()
            headers = headers or default_headers
        headers = headers or DEFAULT_HEADERS

        workbook = openpyxl.Workbook()
        sheet = workbook.active
        sheet.title = sheet_title
        sheet.append(headers)

        header_font = Font(bold=True, color="FFFFFF")
        header_fill = PatternFill(start_color="1F4E78", end_color="1F4E78", fill_type="solid")
        for col, _ in enumerate(headers, 1):
            cell = sheet.cell(row=1, column=col)
            cell.font = header_font
            cell.fill = header_fill
            cell.alignment = Alignment(horizontal="center", vertical="center")

        for row in rows:
            sheet.append(list(row))

        for col, header in enumerate(headers, 1):
            width = max([len(str(header))] + [len(str(r[col - 1])) for r in rows if col - 1 < len(r)])
            sheet.column_dimensions[get_column_letter(col)].width = min(width + 2, 50)
        sheet.freeze_panes = "A2"

        buffer = io.BytesIO()
        workbook.save(buffer)
        return buffer.getvalue()

    def to_json_payload(self) -> Dict[str, Any]:
        """Document published next to the workbook for the public pages."""
        headers, rows = self.to_rows()
        return {
            "headers": headers,
            "rows": rows,
            "metadata": {
                "total_records": len(self.catechumens),
                "last_updated": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
                "updated_by": "admin-panel",
                "source": self.source_name,
            },
            "statistics": self.get_statistics(),
        }

    def save_to_github(
        self,
        client: "GitHubClient",
        path: str = DEFAULT_JSON_PATH,
        message: Optional[str] = None,
    ) -> "CommitResult":
        body = json.dumps(self.to_json_payload(), indent=2, ensure_ascii=False) + "\n"
        message = message or f"Atualizar dados da catequese - {datetime.now().strftime('%d/%m/%Y')}"
        return client.commit_file_with_retry(path, body, message)

    # ── Local state ──────────────────────────────────────────────

    def save_state(self, path: Path) -> None:
        save_json({
            "headers": self.headers,
            "source_name": self.source_name,
            "loaded_at": self.loaded_at,
            "catechumens": [c.to_dict() for c in self.catechumens],
        }, path)

    @classmethod
    def from_state(cls, path: Path) -> "RosterManager":
        """Roster saved by ``save_state``; empty when there is none."""
        roster = cls()
        data = load_json(path, default=None)
        if not isinstance(data, dict):
            return roster
        roster.headers = data.get("headers", [])
        roster.source_name = data.get("source_name")
        roster.loaded_at = data.get("loaded_at")
        roster.catechumens = [Catechumen(**c) for c in data.get("catechumens", [])]
        roster._rebuild()
        return roster
