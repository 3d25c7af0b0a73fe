"""Static course catalogue and downloadable union documents."""
from __future__ import annotations

from typing import Any

COURSE_LISTED_STATUSES = ("active", "upcoming")

COURSES: tuple[dict[str, Any], ...] = (
    {
        "id": "1",
        "title": "Inteligencia Artificial Aplicada al Sector Educativo del CLM",
        "description": "Curso intensivo sobre las últimas tendencias en IA aplicadas a la educación en Castilla-La Mancha",
        "startDate": "2024-12-15T09:00:00Z",
        "endDate": "2024-12-17T18:00:00Z",
        "status": "active",
        "price": 0,
        "maxStudents": 30,
        "currentStudents": 15,
        "location": "Sede UGT Granada",
        "instructor": "Dr. Antonio López Martínez",
        "category": "Tecnología Educativa",
        "duration": "20 horas",
        "requirements": "Ser afiliado a UGT-CLM",
    },
    {
        "id": "2",
        "title": "Negociación Colectiva y Derechos Laborales",
        "description": "Curso práctico sobre técnicas de negociación y normativa laboral vigente",
        "startDate": "2024-12-20T16:00:00Z",
        "endDate": "2024-12-20T20:00:00Z",
        "status": "active",
        "price": 0,
        "maxStudents": 25,
        "currentStudents": 8,
        "location": "Online - Zoom",
        "instructor": "María González Gómez",
        "category": "Formación Sindical",
        "duration": "4 horas",
        "requirements": "Ninguno",
    },
    {
        "id": "3",
        "title": "Prevención de Riesgos Laborales en el Sector Educativo",
        "description": "Formación obligatoria en prevención de riesgos específica para centros educativos",
        "startDate": "2025-01-10T09:00:00Z",
        "endDate": "2025-01-10T14:00:00Z",
        "status": "upcoming",
        "price": 0,
        "maxStudents": 40,
        "currentStudents": 5,
        "location": "Centro de Formación UGT Granada",
        "instructor": "Carlos Rodríguez Pérez",
        "category": "Prevención",
        "duration": "5 horas",
        "requirements": "Ser personal docente o administrativo",
    },
)

UNION_DOCUMENTS: tuple[dict[str, Any], ...] = (
    {
        "id": "1",
        "title": "Estatutos UGT-CLM",
        "description": "Documentos estatutarios actualizados de UGT Castilla-La Mancha",
        "type": "PDF",
        "url": "/documents/estatutos-ugt-clm.pdf",
        "category": "legal",
        "uploadDate": "2024-01-10T10:00:00Z",
        "size": "2.5 MB",
        "required": True,
    },
    {
        "id": "2",
        "title": "Guía de Derechos Laborales 2024",
        "description": "Guía completa de derechos y obligaciones laborales para 2024",
        "type": "PDF",
        "url": "/documents/guia-derechos-2024.pdf",
        "category": "legal",
        "uploadDate": "2024-03-15T14:30:00Z",
        "size": "4.8 MB",
        "required": False,
    },
    {
        "id": "3",
        "title": "Modelo de Solicitud de Bajas Laborales",
        "description": "Formulario oficial para solicitar bajas laborales",
        "type": "PDF",
        "url": "/documents/solicitud-bajas.pdf",
        "category": "formularios",
        "uploadDate": "2024-06-20T09:15:00Z",
        "size": "156 KB",
        "required": False,
    },
    {
        "id": "4",
        "title": "Convenio Colectivo Educación CLM 2023-2025",
        "description": "Texto completo del convenio colectivo para personal educativo",
        "type": "PDF",
        "url": "/documents/convenio-educacion-clm.pdf",
        "category": "convenios",
        "uploadDate": "2023-12-01T11:00:00Z",
        "size": "8.2 MB",
        "required": False,
    },
)


def list_courses(status: str | None = None) -> list[dict[str, Any]]:
    wanted = (status,) if status else COURSE_LISTED_STATUSES
    return [dict(c) for c in COURSES if c["status"] in wanted]


def find_course(course_id: str) -> dict[str, Any] | None:
    return next((dict(c) for c in COURSES if c["id"] == str(course_id)), None)
