"""
LLM-powered data generator for the Clerkship Scheduler.
STRATEGY: 'Big Bang' Batching (1 Request per Category) to stay under RPM limits.
The LLM writes names and shapes; ids, availability and teams are filled in here
so every generated period loads cleanly into a store.
"""

import os
import json
import logging
import re
import google.generativeai as genai
from typing import List, Tuple, Dict, Any, Type
from datetime import date, timedelta
from pydantic import ValidationError, BaseModel

from models import (
    Clerkship,
    HealthSystem,
    Preceptor,
    PreceptorAvailability,
    PreceptorTeam,
    PreceptorTeamMember,
    SchedulingPeriod,
    Site,
    Student,
)

logger = logging.getLogger(__name__)

MODEL_NAME = "gemini-2.5-flash-preview-09-2025"


class DataGenerator:
    def __init__(self, api_key: str | None = None):
        self.api_key = api_key or os.environ.get("GOOGLE_API_KEY")
        if not self.api_key:
            raise ValueError("GOOGLE_API_KEY not found. Please set it in environment.")

        genai.configure(api_key=self.api_key)
        self.model = genai.GenerativeModel(MODEL_NAME)
        self.total_cost = 0.0

    def _estimate_cost(self, prompt_tokens: int, response_tokens: int) -> float:
        return (prompt_tokens * 0.075 + response_tokens * 0.30) / 1_000_000

    def _robust_parse_json(self, raw_text: str) -> List[Any]:
        """
        Strips Markdown fences and normalizes the payload to a list.
        """
        if not raw_text:
            return []

        # 1. Clean Markdown Code Blocks
        clean_text = re.sub(r"```json\s*|\s*```", "", raw_text).strip()

        try:
            data = json.loads(clean_text)
        except json.JSONDecodeError:
            # Fallback: pull out the outermost list
            match = re.search(r'(\[.*\])', clean_text, re.DOTALL)
            if not match:
                return []
            try:
                data = json.loads(match.group(1))
            except json.JSONDecodeError:
                return []

        # 2. Normalize Data Shape
        if isinstance(data, list):
            return data
        if isinstance(data, dict):
            for key in ['health_systems', 'students', 'preceptors', 'clerkships', 'result']:
                if key in data and isinstance(data[key], list):
                    return data[key]
            return [data]
        return []

    def _generate(self, prompt: str) -> List[Any]:
        """One request, cost tracked, parsed to a list of dicts."""
        generation_config = genai.GenerationConfig(
            response_mime_type="application/json",
            max_output_tokens=16000,
            temperature=0.7
        )
        response = self.model.generate_content(prompt, generation_config=generation_config)

        usage = getattr(response, 'usage_metadata', None)
        if usage is not None:
            self.total_cost += self._estimate_cost(usage.prompt_token_count, usage.candidates_token_count)

        return self._robust_parse_json(response.text)

    def _fetch_big_batch(self, prompt: str, model_class: Type[BaseModel], id_prefix: str) -> List[Any]:
        """
        Executes a generation request and keeps only the items that validate.
        Ids are assigned here, in response order.
        """
        try:
            data_list = self._generate(prompt)
        except Exception as e:
            logger.error(f"Batch generation failed for {model_class.__name__}: {e}")
            return []

        valid_items = []
        for i, item in enumerate(data_list):
            if not isinstance(item, dict):
                continue
            item['id'] = f"{id_prefix}_{i + 1:03d}"
            try:
                valid_items.append(model_class(**item))
            except ValidationError as e:
                logger.warning(f"Skipping invalid {model_class.__name__} {i}: {e.json()}")
        return valid_items

    def generate_locations(self, health_system_count: int = 2, sites_per_system: int = 2) -> Tuple[List[HealthSystem], List[Site]]:
        prompt = f"""
        Generate {health_system_count} hospital health systems, each with {sites_per_system} clinical sites.
        OUTPUT: JSON Array.
        OBJECT STRUCTURE:
          {{ "name": "North Health", "sites": [ {{ "name": "North Clinic", "max_students_per_day": 4 }} ] }}
        RULES:
        - "max_students_per_day": INTEGER between 2 and 8, or null.
        """
        try:
            raw = self._generate(prompt)
        except Exception as e:
            logger.error(f"Location generation failed: {e}")
            return [], []

        systems, sites = [], []
        for i, entry in enumerate(raw):
            if not isinstance(entry, dict):
                continue
            hs_id = f"hs_{i + 1:03d}"
            try:
                systems.append(HealthSystem(id=hs_id, name=entry.get("name", "")))
            except ValidationError as e:
                logger.warning(f"Skipping invalid health system {i}: {e.json()}")
                continue
            for j, site in enumerate(entry.get("sites") or []):
                try:
                    sites.append(Site(
                        id=f"site_{i + 1:03d}_{j + 1}",
                        name=site.get("name", ""),
                        health_system_id=hs_id,
                        max_students_per_day=site.get("max_students_per_day"),
                    ))
                except (ValidationError, AttributeError) as e:
                    logger.warning(f"Skipping invalid site {i}/{j}: {e}")
        return systems, sites

    def generate_period(
        self,
        start_date: date = None,
        days: int = 28,
        student_count: int = 8,
        preceptor_count: int = 8,
        clerkship_count: int = 2
    ) -> Tuple[Dict[str, List], float]:
        """
        Generates a full scheduling period (4 API calls).
        Availability is every weekday at every site of the preceptor; teams group
        preceptors by the clerkship specialty they can teach.
        """
        if start_date is None:
            start_date = date.today()
        end_date = start_date + timedelta(days=days - 1)
        cost_before = self.total_cost

        logger.info("Generating period entities (4 API calls)...")

        # 1. Locations
        systems, sites = self.generate_locations()

        # 2. Clerkships - Strong Prompt
        prompt_clk = f"""
        Generate {clerkship_count} medical school clerkships.
        OUTPUT: JSON Array.
        VALID "clerkship_type" VALUES: ["inpatient", "outpatient"]
        RULES:
        - "required_days": INTEGER between 5 and {max(5, days // 3)}.
        - "specialty": the medical specialty (e.g. "Pediatrics").
        - "electives": empty list.
        FIELDS: name, specialty, clerkship_type, required_days, electives.
        """
        clerkships = self._fetch_big_batch(prompt_clk, Clerkship, "clk")

        # 3. Students
        prompt_stu = f"""
        Generate {student_count} third-year medical students.
        OUTPUT: JSON Array.
        FIELDS: name, email.
        """
        students = self._fetch_big_batch(prompt_stu, Student, "stu")

        # 4. Preceptors - Strong Prompt
        site_ids = json.dumps([s.id for s in sites])
        specialties = json.dumps(sorted({c.specialty for c in clerkships if c.specialty}))
        prompt_pre = f"""
        Generate {preceptor_count} clinical preceptors.
        OUTPUT: JSON Array.
        RULES:
        - "specialty": one of {specialties}.
        - "site_ids": non-empty list chosen ONLY from {site_ids}.
        - "max_students": INTEGER 1 or 2.
        FIELDS: name, email, specialty, site_ids, max_students.
        """
        preceptors = self._fetch_big_batch(prompt_pre, Preceptor, "pre")
        known_sites = {s.id: s for s in sites}
        preceptors = [p for p in preceptors if all(s in known_sites for s in p.site_ids)]
        for preceptor in preceptors:
            preceptor.health_system_id = known_sites[preceptor.site_ids[0]].health_system_id

        bundle = {
            "periods": [SchedulingPeriod(id=f"gen-{start_date.isoformat()}", name=f"Generated {start_date:%b %Y}",
                                         start_date=start_date, end_date=end_date)],
            "health_systems": systems,
            "sites": sites,
            "clerkships": clerkships,
            "students": students,
            "preceptors": preceptors,
            "availability": weekday_availability(preceptors, start_date, end_date),
            "teams": teams_by_specialty(clerkships, preceptors),
        }

        step_cost = self.total_cost - cost_before
        logger.info(f"Generated {len(students)} students, {len(preceptors)} preceptors, {len(clerkships)} clerkships")
        return bundle, step_cost


def weekday_availability(preceptors: List[Preceptor], start: date, end: date) -> List[PreceptorAvailability]:
    records = []
    current = start
    while current <= end:
        if current.weekday() < 5:
            for preceptor in preceptors:
                for site_id in preceptor.site_ids:
                    records.append(PreceptorAvailability(preceptor_id=preceptor.id, site_id=site_id, date=current))
        current += timedelta(days=1)
    return records


def teams_by_specialty(clerkships: List[Clerkship], preceptors: List[Preceptor]) -> List[PreceptorTeam]:
    """One team per clerkship made of the preceptors sharing its specialty (when there are at least 2)."""
    teams = []
    for clerkship in clerkships:
        matching = [p for p in preceptors if p.specialty and clerkship.specialty
                    and p.specialty.lower() == clerkship.specialty.lower()]
        if len(matching) < 2:
            continue
        teams.append(PreceptorTeam(
            id=f"team_{clerkship.id}",
            clerkship_id=clerkship.id,
            name=f"{clerkship.name} Team",
            members=[PreceptorTeamMember(preceptor_id=p.id, priority=i + 1) for i, p in enumerate(matching)],
        ))
    return teams
