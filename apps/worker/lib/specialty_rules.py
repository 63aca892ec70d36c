"""
Domain-tagged expert rules: a complaint or procedure in the claims (or a treatment
on the timeline) without the test or documentation a specialist would expect.

Rules are plain data. A claim rule fires when some claim matches ``triggers`` (and
none of ``exclude``) while no claim satisfies every ``supporting`` group. A timeline
rule fires when some event type matches ``triggers`` while no event type or
description matches ``supporting``.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence, Union

from apps.worker.lib.finding_utils import build_finding, has_keyword
from packages.shared.models import Claim, Flag, Severity, TimelineEvent

logger = logging.getLogger(__name__)

WARN, CRIT, INFO = Severity.WARNING, Severity.CRITICAL, Severity.INFO


@dataclass(frozen=True)
class ClaimRule:
    code: str
    domain: str
    severity: Severity
    message: str
    triggers: tuple[str, ...]
    supporting: tuple[tuple[str, ...], ...]
    exclude: tuple[str, ...] = ()


@dataclass(frozen=True)
class TimelineRule:
    code: str
    domain: str
    severity: Severity
    message: str
    triggers: tuple[str, ...]
    supporting: tuple[str, ...]


Rule = Union[ClaimRule, TimelineRule]


def _claim_text(claim: Claim) -> str:
    return f"{claim.type or ''} {claim.value or ''}"


SPECIALTY_RULES: tuple[Rule, ...] = (
    # ORTHO
    ClaimRule("MISSING_KEY_TEST_ORTHO", "ORTHO", WARN,
              "Orthopedic complaint without documented imaging and/or physical examination.",
              ("back pain", "lumbar", "knee", "shoulder", "orthopedic", "spine"),
              (("mri", "ct", "x-ray", "xr", "ultrasound"), ("physical exam", "range of motion", "orthopedic exam"))),
    # NEURO
    ClaimRule("MISSING_KEY_TEST_NEURO", "NEURO", WARN,
              "Neurological complaint without a neurological examination or imaging.",
              ("neurolog", "numbness", "weakness", "seizure", "stroke", "paresthesia"),
              (("neurological exam", "emg", "nerve conduction", "ct", "mri"),)),
    # CARDIO
    ClaimRule("MISSING_KEY_TEST_CARDIO", "CARDIO", CRIT,
              "Cardiac complaint without an ECG or basic cardiac workup.",
              ("chest pain", "shortness of breath", "dyspnea", "palpitation"),
              (("ecg", "ekg", "troponin", "cardiac", "echo", "angiography"),)),
    # PSYCH
    ClaimRule("MISSING_KEY_TEST_PSYCH", "PSYCH", WARN,
              "Psychiatric complaints without a documented diagnosis or treatment follow-up.",
              ("ptsd", "depression", "anxiety", "psychi", "mental"),
              (("psychiatry", "therapy", "cbt", "ssri", "psych follow-up"),)),
    # REHAB
    TimelineRule("TREATMENT_GAP_REHAB", "REHAB", INFO,
                 "Rehabilitation treatment without documented continuation or follow-up.",
                 ("therapy", "rehab", "physio"),
                 ("follow", "review", "evaluation")),
    # DENTAL
    ClaimRule("MISSING_KEY_TEST_DENTAL_IMAGING", "DENTAL", CRIT,
              "Dental trauma without a supporting CT or panoramic radiograph.",
              ("jaw fracture", "mandible", "maxilla", "fracture jaw", "bite trauma"),
              (("panoramic", "ct", "cbct", "dental x-ray", "occlusal"),)),
    ClaimRule("MISSING_KEY_DOC_DENTAL_PRE_POST", "DENTAL", WARN,
              "Invasive dental treatment without pre/post documentation or complication notes.",
              ("implant", "extraction", "root canal", "crown", "bridge"),
              (("pre-op", "post-op", "follow-up", "complication", "radiograph"),)),
    ClaimRule("INFECTION_FOLLOWUP_MISSING_DENTAL", "DENTAL", WARN,
              "Dental infection without documented antibiotics, drainage or follow-up.",
              ("abscess", "infection", "swelling", "cellulitis"),
              (("antibiotic", "drainage", "incision", "follow-up"),)),
    ClaimRule("NERVE_INJURY_EVAL_MISSING", "DENTAL", WARN,
              "Dental nerve injury without a neurological or sensory examination.",
              ("paresthesia", "hypoesthesia", "mental nerve", "nerve injury", "numbness"),
              (("neurolog", "sensory test", "cbct", "emg"),)),
    # ENT
    ClaimRule("MISSING_KEY_TEST_ENT_ENDOSCOPY", "ENT", WARN,
              "ENT complaints without endoscopy or imaging.",
              ("sinusitis", "nasal polyp", "airway", "throat mass", "laryngeal", "stridor"),
              (("endoscopy", "fiberoptic", "ct", "mri", "scope"),)),
    ClaimRule("MISSING_KEY_TEST_ENT_AUDIOMETRY", "ENT", WARN,
              "Hearing impairment without a formal hearing test.",
              ("hearing loss", "tinnitus", "otitis", "ear fullness"),
              (("audiogram", "tympanometry", "hearing test"),)),
    ClaimRule("ENT_INFECTION_FOLLOWUP_GAP", "ENT", WARN,
              "ENT infection without documented culture, treatment and follow-up.",
              ("otitis", "mastoiditis", "tonsillitis", "pharyngitis"),
              (("culture", "antibiotic", "follow-up", "control visit"),)),
    # GASTRO
    ClaimRule("MISSING_KEY_TEST_GASTRO_ENDO", "GASTRO", CRIT,
              "Gastrointestinal bleeding or ulcer without endoscopic documentation.",
              ("gi bleed", "hematemesis", "melena", "ulcer", "varices"),
              (("endoscopy", "gastroscopy", "banding", "colonoscopy"),)),
    ClaimRule("MISSING_KEY_TEST_GASTRO_LABS", "GASTRO", WARN,
              "Liver or pancreatic condition without supporting laboratory tests.",
              ("hepatitis", "cirrhosis", "liver failure", "pancreatitis"),
              (("lft", "ast", "alt", "amylase", "lipase", "bilirubin"),)),
    TimelineRule("GASTRO_TREATMENT_GAP", "GASTRO", WARN,
                 "Immunosuppressive treatment without subsequent follow-up or monitoring labs.",
                 ("biologic", "steroid", "infusion"),
                 ("clinic visit", "follow", "monitor", "labs")),
    # OBGYN
    ClaimRule("OBGYN_PREG_BLEED_NO_US", "OBGYN", CRIT,
              "Bleeding in pregnancy without documented ultrasound or fetal follow-up.",
              ("pregnancy bleeding", "vaginal bleed", "placenta previa"),
              (("ultrasound", "us", "sonography", "doppler"),)),
    ClaimRule("OBGYN_HTN_NO_LABS", "OBGYN", WARN,
              "Hypertension in pregnancy without documented labs or urine protein.",
              ("preeclampsia", "gestational hypertension"),
              (("proteinuria", "urine protein", "platelets", "lft", "creatinine"),)),
    ClaimRule("OBGYN_CSECTION_NO_INDICATION", "OBGYN", WARN,
              "Cesarean section without a documented medical indication.",
              ("cesarean", "c-section"),
              (("indication", "placenta", "fetal distress", "labor arrest"),)),
    ClaimRule("OBGYN_POSTPARTUM_INFECTION_GAP", "OBGYN", WARN,
              "Suspected postpartum infection without documented treatment and follow-up.",
              ("postpartum fever", "lochia odor", "postpartum infection"),
              (("antibiotic", "culture", "wound care", "follow-up"),)),
    ClaimRule("OBGYN_FETAL_MONITORING_MISSING", "OBGYN", CRIT,
              "Suspected fetal distress without documented fetal monitoring.",
              ("reduced fetal movement", "non reassuring", "oligohydramnios", "fetal distress"),
              (("nst", "ctg", "biophysical profile", "doppler", "fetal monitoring"),)),
    ClaimRule("OBGYN_VBAC_NO_CONSENT", "OBGYN", WARN,
              "Trial of labor after cesarean without detailed informed consent.",
              ("vbac", "trial of labor after cesarean"),
              (("consent", "risk discussion", "signed"),)),
    # EMERGENCY
    ClaimRule("EMERGENCY_CHEST_PAIN_NO_ECG", "EMERGENCY", CRIT,
              "Chest pain in the emergency department without documented ECG, troponin or saturation.",
              ("er chest pain", "emergency chest", "triage chest"),
              (("ecg", "troponin", "saturation", "monitor"),)),
    ClaimRule("EMERGENCY_DYSPNEA_NO_SAT", "EMERGENCY", CRIT,
              "Shortness of breath in the emergency department without saturation, blood gas or chest X-ray.",
              ("shortness of breath", "dyspnea", "respiratory distress"),
              (("pulse ox", "abg", "blood gas", "chest x-ray"),)),
    ClaimRule("EMERGENCY_HEAD_TRAUMA_NO_CT", "EMERGENCY", WARN,
              "Head trauma in the emergency department without documented imaging or neurological exam.",
              ("head trauma", "concussion", "loss of consciousness", "gcs"),
              (("ct head", "neuroimaging", "neuro exam"),)),
    ClaimRule("EMERGENCY_FRACTURE_NO_IMAGING", "EMERGENCY", WARN,
              "Suspected fracture in the emergency department without documented imaging or immobilization.",
              ("fracture", "bone deformity"),
              (("x-ray", "ct", "splint", "immobilization"),)),
    ClaimRule("EMERGENCY_FEVER_NO_LABS", "EMERGENCY", WARN,
              "High fever in the emergency department without basic blood tests.",
              ("fever 39", "sepsis suspicion", "febrile"),
              (("cbc", "blood culture", "lactate", "urine test"),)),
    ClaimRule("EMERGENCY_PAIN_NO_ANALGESIA", "EMERGENCY", INFO,
              "Acute pain complaint in the emergency department without documented pain management.",
              ("10/10 pain", "severe pain", "analgesia"),
              (("analgesic", "pain control", "medication given"),)),
    # ICU
    ClaimRule("ICU_SEPSIS_NO_CULTURE", "ICU", CRIT,
              "Sepsis diagnosis in intensive care without documented cultures or inflammatory markers.",
              ("sepsis", "septic shock", "bacteremia"),
              (("blood culture", "lactate", "antibiotic plan"),)),
    ClaimRule("ICU_VENTILATION_NO_ABG", "ICU", WARN,
              "Ventilated patient without blood gases or an updated ventilation plan.",
              ("mechanical ventilation", "intubated", "respiratory failure"),
              (("abg", "ventilator settings", "weaning plan"),)),
    ClaimRule("ICU_SHOCK_NO_LACTATE", "ICU", CRIT,
              "Shock without documented lactate or hemodynamic monitoring.",
              ("shock", "vasopressor", "map <", "hypotension"),
              (("lactate", "hemodynamic monitoring", "echo bedside"),)),
    ClaimRule("ICU_SEDATION_NO_PLAN", "ICU", WARN,
              "Sedation without a daily assessment plan or sedation scale.",
              ("sedation", "propofol", "midazolam", "dexmedetomidine"),
              (("sedation scale", "daily interruption", "sedation plan"),)),
    ClaimRule("ICU_NEURO_CHANGE_NO_IMAGING", "ICU", WARN,
              "Neurological change in intensive care without documented imaging or consult.",
              ("altered mental status", "coma", "gcs drop"),
              (("ct head", "neuro imaging", "neuro consult"),)),
    ClaimRule("ICU_NUTRITION_NO_PLAN", "ICU", INFO,
              "ICU nutrition without a feeding plan or nutritional monitoring.",
              ("tpn", "enteral feeding", "malnutrition"),
              (("dietician", "calorie target", "monitoring weight"),)),
    # GENERAL SURGERY
    ClaimRule("GENSURG_ACUTE_ABD_NO_REVIEW", "GENERAL_SURGERY", CRIT,
              "Suspected acute abdomen without documented surgical consult or imaging.",
              ("acute abdomen", "peritonitis", "guarding", "rigid abdomen"),
              (("surgical consult", "imaging", "ct abdomen"),)),
    ClaimRule("GENSURG_APPENDICITIS_NO_IMAGING", "GENERAL_SURGERY", WARN,
              "Suspected appendicitis without imaging or inflammatory markers.",
              ("appendicitis", "rlq pain"),
              (("appendix ultrasound", "ct abdomen", "wbc", "crp"),)),
    ClaimRule("GENSURG_GALLBLADDER_NO_US", "GENERAL_SURGERY", WARN,
              "Suspected gallbladder disease without ultrasound or liver tests.",
              ("cholecystitis", "gallbladder", "biliary colic"),
              (("ultrasound", "hidascan", "lft"),)),
    ClaimRule("GENSURG_POSTOP_BLEED_NO_LABS", "GENERAL_SURGERY", WARN,
              "Suspected postoperative bleeding without blood tests or imaging.",
              ("postoperative bleed", "drop hemoglobin", "hematoma post op"),
              (("cbc", "coagulation", "imaging", "surgical review"),)),
    ClaimRule("GENSURG_POSTOP_COMPLICATION_NO_PLAN", "GENERAL_SURGERY", WARN,
              "Postoperative complication without a treatment and follow-up plan.",
              ("wound infection", "dehiscence", "ileus", "abscess"),
              (("treatment plan", "antibiotic", "follow-up"),)),
    ClaimRule("GENSURG_OBSTRUCTION_NO_IMAGING", "GENERAL_SURGERY", WARN,
              "Suspected bowel obstruction without imaging or follow-up tests.",
              ("bowel obstruction", "ileus", "vomiting bilious"),
              (("abdominal x-ray", "ct", "ng tube", "surgical plan"),)),
    # PLASTIC SURGERY
    ClaimRule("PLASTIC_MAJOR_OP_NO_BASELINE", "PLASTIC_SURGERY", WARN,
              "Major plastic surgery without baseline documentation or pre-operative photos.",
              ("breast reconstruction", "facelift", "rhinoplasty", "abdominoplasty"),
              (("pre-op photo", "consent", "baseline exam"),)),
    ClaimRule("PLASTIC_INFECTION_NO_TREATMENT", "PLASTIC_SURGERY", CRIT,
              "Infection or necrosis after plastic surgery without documented treatment.",
              ("flap necrosis", "infection reconstruction", "cellulitis graft"),
              (("antibiotic", "drainage", "wound care"),)),
    ClaimRule("PLASTIC_IMPLANT_NO_DEVICE_INFO", "PLASTIC_SURGERY", WARN,
              "Implant placement or exchange without documented device details.",
              ("implant rupture", "silicone", "implant exchange"),
              (("lot", "batch", "manufacturer", "catalog"),)),
    ClaimRule("PLASTIC_NECROSIS_NO_PLAN", "PLASTIC_SURGERY", WARN,
              "Necrosis after plastic surgery without a documented treatment plan.",
              ("skin necrosis", "flap failure", "ischemia skin"),
              (("debridement", "hyperbaric", "reoperation"),)),
    ClaimRule("PLASTIC_REVISION_NO_REASON", "PLASTIC_SURGERY", INFO,
              "Revision surgery without a documented medical or aesthetic reason.",
              ("revision surgery", "scar revision", "touch-up"),
              (("asymmetry", "contracture", "patient complaint", "photo"),)),
    ClaimRule("PLASTIC_FAT_TRANSFER_NO_FOLLOWUP", "PLASTIC_SURGERY", WARN,
              "Fat transfer without documented volumes or post-treatment follow-up.",
              ("fat transfer", "lipofilling", "fat graft"),
              (("follow-up", "volume", "ultrasound", "complication"),)),
    ClaimRule("PLASTIC_DONOR_NO_MONITOR", "PLASTIC_SURGERY", WARN,
              "Graft donor site without documented monitoring or dressing.",
              ("skin graft", "donor site", "split thickness"),
              (("donor assessment", "dressing", "follow-up"),)),
    # COSMETIC INJECTABLES
    ClaimRule("COSMETIC_BOTOX_NO_DOSAGE", "COSMETIC_INJECTABLES", WARN,
              "Botulinum toxin treatment without documented site, dose or batch number.",
              ("botox", "botulinum toxin", "wrinkle injection"),
              (("units", "dose", "site", "batch", "lot"),)),
    ClaimRule("COSMETIC_FILLER_NO_BATCH", "COSMETIC_INJECTABLES", WARN,
              "Hyaluronic acid injection without documented product type and batch number.",
              ("hyaluronic acid", "dermal filler", "juvederm", "restylane"),
              (("product name", "lot", "hyaluronidase", "syringe"),)),
    ClaimRule("COSMETIC_VASCULAR_EVENT_NO_PLAN", "COSMETIC_INJECTABLES", CRIT,
              "Suspected vascular complication without documented urgent treatment.",
              ("vascular occlusion", "blanching", "vision loss", "embolism"),
              (("hyaluronidase", "er referral", "warm compress", "aspirin"),)),
    ClaimRule("COSMETIC_NO_CONSENT", "COSMETIC_INJECTABLES", WARN,
              "Aesthetic injection procedure without documented informed consent.",
              ("cosmetic", "aesthetic", "injectable", "lip filler"),
              (("consent", "risk discussion", "signed"),)),
    ClaimRule("COSMETIC_PAIN_NO_EVAL", "COSMETIC_INJECTABLES", WARN,
              "Unusual pain after injection without documented referral or urgent care.",
              ("severe pain injection", "vision disturbance", "neuropathy after filler"),
              (("er referral", "ophthalmology", "urgent review"),)),
    ClaimRule("COSMETIC_INFECTION_NO_TREATMENT", "COSMETIC_INJECTABLES", WARN,
              "Infection after aesthetic injection without antibiotic treatment or drainage.",
              ("cellulitis filler", "abscess injection", "warmth swelling filler"),
              (("antibiotic", "drainage", "culture"),)),
    ClaimRule("COSMETIC_NO_FOLLOWUP_NOTE", "COSMETIC_INJECTABLES", INFO,
              "Serial aesthetic treatment without documented follow-up or outcome.",
              ("touch-up", "maintenance", "booster"),
              (("follow-up", "photo comparison", "plan update"),)),
)


def _run_claim_rule(rule: ClaimRule, claims: list[Claim]) -> Flag | None:
    matched = [
        c for c in claims
        if has_keyword(_claim_text(c), rule.triggers) and not has_keyword(_claim_text(c), rule.exclude)
    ]
    if not matched:
        return None
    supported = all(
        any(has_keyword(_claim_text(c), group) for c in claims)
        for group in rule.supporting
    )
    if supported:
        return None
    return build_finding(
        rule.code,
        rule.message,
        rule.severity,
        domain=rule.domain,
        related_claim_ids=[c.id for c in matched if c.id],
    )


def _run_timeline_rule(rule: TimelineRule, timeline: list[TimelineEvent]) -> Flag | None:
    if not any(has_keyword(e.type, rule.triggers) for e in timeline):
        return None
    if any(has_keyword(e.type, rule.supporting) or has_keyword(e.description, rule.supporting) for e in timeline):
        return None
    return build_finding(rule.code, rule.message, rule.severity, domain=rule.domain)


def run_specialty_rules(
    claims: list[Claim],
    timeline: list[TimelineEvent],
    rules: Sequence[Rule] = SPECIALTY_RULES,
) -> list[Flag]:
    """Evaluate every rule in order; each rule contributes at most one finding."""
    findings: list[Flag] = []
    for rule in rules:
        if isinstance(rule, TimelineRule):
            finding = _run_timeline_rule(rule, timeline)
        else:
            finding = _run_claim_rule(rule, claims)
        if finding is not None:
            findings.append(finding)
    logger.debug(f"Specialty rules: {len(findings)} findings from {len(rules)} rules")
    return findings
