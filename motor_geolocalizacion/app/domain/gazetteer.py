"""
gazetteer.py
------------
Tablas estáticas del motor y normalizadores de nombres.

Todo lo que aquí vive es inmutable y se carga una sola vez al importar
el módulo: idioma → estado, fuente tipográfica → estado, patrones de
hostname de ISPs indios, códigos de círculo RDAP, PoPs del edge,
subredes CGN de operadores móviles y alias de ciudades/estados.

Regla de los alias de ciudad: ningún nombre canónico aparece como
clave de alias, por eso normalize_city es idempotente.
"""

import re
from types import MappingProxyType
from typing import NamedTuple, Optional


# ------------------------------------------------------------------ #
#  Alias de ciudades: nombre colonial/alterno → nombre canónico       #
#  Claves en minúsculas (casefold)                                    #
# ------------------------------------------------------------------ #
CITY_ALIASES = MappingProxyType({
    "bengaluru":   "Bangalore",
    "bombay":      "Mumbai",
    "calcutta":    "Kolkata",
    "madras":      "Chennai",
    "poona":       "Pune",
    "baroda":      "Vadodara",
    "trivandrum":  "Thiruvananthapuram",
    "cochin":      "Kochi",
    "vizag":       "Visakhapatnam",
    "simla":       "Shimla",
    "pondicherry": "Puducherry",
    "allahabad":   "Prayagraj",
    "mangalore":   "Mangaluru",
    "mysore":      "Mysuru",
    "benaras":     "Varanasi",
    "banaras":     "Varanasi",
    "gurgaon":     "Gurugram",
    "new delhi":   "Delhi",
    "ahmadabad":   "Ahmedabad",
    "nasik":       "Nashik",
    "trichy":      "Tiruchirappalli",
})


# ------------------------------------------------------------------ #
#  Ciudad canónica → estado                                           #
# ------------------------------------------------------------------ #
CITY_STATES = MappingProxyType({
    "Mumbai": "Maharashtra", "Pune": "Maharashtra", "Nagpur": "Maharashtra",
    "Thane": "Maharashtra", "Nashik": "Maharashtra", "Aurangabad": "Maharashtra",
    "Kolhapur": "Maharashtra", "Solapur": "Maharashtra", "Amravati": "Maharashtra",
    "Chandrapur": "Maharashtra",
    "Delhi": "Delhi",
    "Noida": "Uttar Pradesh", "Lucknow": "Uttar Pradesh", "Kanpur": "Uttar Pradesh",
    "Agra": "Uttar Pradesh", "Varanasi": "Uttar Pradesh", "Meerut": "Uttar Pradesh",
    "Prayagraj": "Uttar Pradesh", "Gorakhpur": "Uttar Pradesh",
    "Gurugram": "Haryana", "Faridabad": "Haryana",
    "Ahmedabad": "Gujarat", "Surat": "Gujarat", "Vadodara": "Gujarat",
    "Rajkot": "Gujarat", "Gandhinagar": "Gujarat",
    "Bangalore": "Karnataka", "Mysuru": "Karnataka", "Mangaluru": "Karnataka",
    "Hubli": "Karnataka",
    "Chennai": "Tamil Nadu", "Coimbatore": "Tamil Nadu", "Madurai": "Tamil Nadu",
    "Salem": "Tamil Nadu", "Tiruchirappalli": "Tamil Nadu",
    "Kolkata": "West Bengal",
    "Hyderabad": "Telangana", "Warangal": "Telangana",
    "Visakhapatnam": "Andhra Pradesh", "Vijayawada": "Andhra Pradesh",
    "Jaipur": "Rajasthan", "Jodhpur": "Rajasthan", "Udaipur": "Rajasthan", "Kota": "Rajasthan",
    "Indore": "Madhya Pradesh", "Bhopal": "Madhya Pradesh", "Gwalior": "Madhya Pradesh",
    "Jabalpur": "Madhya Pradesh",
    "Patna": "Bihar", "Gaya": "Bihar", "Muzaffarpur": "Bihar",
    "Chandigarh": "Chandigarh",
    "Kochi": "Kerala", "Thiruvananthapuram": "Kerala", "Kozhikode": "Kerala", "Kollam": "Kerala",
    "Guwahati": "Assam", "Shillong": "Meghalaya", "Agartala": "Tripura",
    "Bhubaneswar": "Odisha", "Cuttack": "Odisha", "Rourkela": "Odisha",
    "Dehradun": "Uttarakhand",
    "Ranchi": "Jharkhand",
    "Raipur": "Chhattisgarh",
    "Goa": "Goa",
    "Amritsar": "Punjab", "Ludhiana": "Punjab", "Jalandhar": "Punjab", "Patiala": "Punjab",
    "Shimla": "Himachal Pradesh",
    "Puducherry": "Puducherry",
})


# ------------------------------------------------------------------ #
#  Alias de estados → clave normalizada (minúsculas)                  #
# ------------------------------------------------------------------ #
STATE_ALIASES = MappingProxyType({
    "tamilnadu":                           "tamil nadu",
    "tamil_nadu":                          "tamil nadu",
    "tn":                                  "tamil nadu",
    "ap":                                  "andhra pradesh",
    "ts":                                  "telangana",
    "telengana":                           "telangana",
    "mh":                                  "maharashtra",
    "gj":                                  "gujarat",
    "up":                                  "uttar pradesh",
    "mp":                                  "madhya pradesh",
    "wb":                                  "west bengal",
    "ka":                                  "karnataka",
    "dl":                                  "delhi",
    "nct of delhi":                        "delhi",
    "national capital territory of delhi": "delhi",
    "orissa":                              "odisha",
    "pondicherry":                         "puducherry",
    "uttaranchal":                         "uttarakhand",
    "jammu & kashmir":                     "jammu and kashmir",
})


# ------------------------------------------------------------------ #
#  Idioma del navegador → estados candidatos + confianza base         #
# ------------------------------------------------------------------ #
class LanguageProfile(NamedTuple):
    states:     tuple[str, ...]
    confidence: int


LANGUAGE_STATES = MappingProxyType({
    "gu":  LanguageProfile(("Gujarat",), 85),
    "ta":  LanguageProfile(("Tamil Nadu", "Puducherry"), 85),
    "te":  LanguageProfile(("Telangana", "Andhra Pradesh"), 78),
    "mr":  LanguageProfile(("Maharashtra", "Goa"), 82),
    "bn":  LanguageProfile(("West Bengal", "Tripura"), 82),
    "kn":  LanguageProfile(("Karnataka",), 85),
    "ml":  LanguageProfile(("Kerala", "Lakshadweep"), 85),
    "pa":  LanguageProfile(("Punjab", "Chandigarh"), 82),
    "or":  LanguageProfile(("Odisha",), 85),
    "as":  LanguageProfile(("Assam",), 85),
    "mni": LanguageProfile(("Manipur",), 88),
    "kok": LanguageProfile(("Goa",), 80),
    "doi": LanguageProfile(("Jammu and Kashmir",), 80),
    "sat": LanguageProfile(("Jharkhand",), 78),
    "mai": LanguageProfile(("Bihar",), 75),
    "bho": LanguageProfile(("Bihar", "Uttar Pradesh", "Jharkhand"), 60),
    "ne":  LanguageProfile(("Sikkim", "West Bengal"), 70),
    "sd":  LanguageProfile(("Gujarat", "Rajasthan"), 55),
    "ur":  LanguageProfile(("Jammu and Kashmir", "Uttar Pradesh", "Telangana"), 40),
    # Hindi es demasiado extendido para inferir estado
    "hi":  LanguageProfile(
        (
            "Uttar Pradesh", "Madhya Pradesh", "Bihar", "Rajasthan",
            "Chhattisgarh", "Jharkhand", "Uttarakhand", "Haryana",
            "Himachal Pradesh", "Delhi", "Chandigarh",
        ),
        20,
    ),
})


# ------------------------------------------------------------------ #
#  Fuente regional instalada → estado                                 #
#  None = escritura demasiado amplia (Devanagari: hindi/marathi)      #
# ------------------------------------------------------------------ #
FONT_STATES = MappingProxyType({
    "Shruti": "Gujarat", "Lohit Gujarati": "Gujarat",
    "Noto Sans Gujarati": "Gujarat", "Gujarati Sangam MN": "Gujarat",
    "Lohit Tamil": "Tamil Nadu", "Noto Sans Tamil": "Tamil Nadu",
    "Tamil Sangam MN": "Tamil Nadu", "InaiMathi": "Tamil Nadu",
    "Lohit Telugu": "Telangana", "Noto Sans Telugu": "Telangana",
    "Telugu Sangam MN": "Telangana",
    "Mangal": None, "Lohit Devanagari": None, "Noto Sans Devanagari": None,
    "Vrinda": "West Bengal", "Lohit Bengali": "West Bengal",
    "Noto Sans Bengali": "West Bengal", "Bangla Sangam MN": "West Bengal",
    "Tunga": "Karnataka", "Lohit Kannada": "Karnataka",
    "Noto Sans Kannada": "Karnataka", "Kannada Sangam MN": "Karnataka",
    "Kartika": "Kerala", "Lohit Malayalam": "Kerala",
    "Noto Sans Malayalam": "Kerala", "Malayalam Sangam MN": "Kerala",
    "Raavi": "Punjab", "Lohit Punjabi": "Punjab",
    "Noto Sans Gurmukhi": "Punjab", "Gurmukhi Sangam MN": "Punjab",
    "Kalinga": "Odisha", "Lohit Odia": "Odisha",
    "Noto Sans Oriya": "Odisha", "Oriya Sangam MN": "Odisha",
})


# ------------------------------------------------------------------ #
#  Patrones de hostname reverso por ISP (se evalúan en orden)        #
#  El grupo 1 captura el token de ciudad                              #
# ------------------------------------------------------------------ #
ISP_HOSTNAME_PATTERNS: tuple[tuple[str, re.Pattern], ...] = tuple(
    (name, re.compile(pattern, re.IGNORECASE))
    for name, pattern in (
        ("gtpl",          r"\.([a-z]+)\.gtpl\.net\.in"),
        ("hathway",       r"\.([a-z]+)\.hathway\.com"),
        ("airtel",        r"abts-([a-z]{3,})-.*\.airtelbroadband\.in"),
        ("airtel_mobile", r"([a-z]+)\.airtel\.in"),
        ("bsnl",          r"\.([a-z]+)\.bsnl\.in"),
        ("bsnl_nic",      r"([a-z]+)\.nic\.in"),
        ("spectranet",    r"\.([a-z]+)\.spectranet\.in"),
        ("railwire",      r"\.([a-z]+)\.railwire"),
        ("act",           r"([a-z]+)\.actcorp\.in"),
        ("tikona",        r"([a-z]+)\.tikona\.in"),
        ("excitel",       r"([a-z]+)\.excitel\.com"),
        ("jio",           r"([a-z]+)\.jio\.com"),
        ("you",           r"([a-z]+)\.youbroadband\.in"),
        ("alliance",      r"([a-z]+)\.alliance\.net\.in"),
        ("generic",       r"([a-z]{4,})\.(isp|net|broadband)"),
    )
)


# ------------------------------------------------------------------ #
#  Token de hostname → ciudad canónica                                #
#  El orden importa: el match por prefijo toma el primero             #
# ------------------------------------------------------------------ #
HOSTNAME_CITY_TOKENS = MappingProxyType({
    "mum": "Mumbai", "mumbai": "Mumbai", "bom": "Mumbai", "bombay": "Mumbai",
    "del": "Delhi", "delhi": "Delhi", "newdelhi": "Delhi", "ndls": "Delhi",
    "ahm": "Ahmedabad", "amd": "Ahmedabad", "ahmedabad": "Ahmedabad", "ahmadabad": "Ahmedabad",
    "blr": "Bangalore", "bangalore": "Bangalore", "bengaluru": "Bangalore", "bang": "Bangalore",
    "chn": "Chennai", "chennai": "Chennai", "madras": "Chennai", "maa": "Chennai",
    "kol": "Kolkata", "kolkata": "Kolkata", "calcutta": "Kolkata", "ccu": "Kolkata",
    "hyd": "Hyderabad", "hyderabad": "Hyderabad",
    "pune": "Pune", "pun": "Pune", "poona": "Pune",
    "surat": "Surat", "srt": "Surat",
    "jaipur": "Jaipur", "jai": "Jaipur", "jpr": "Jaipur",
    "lucknow": "Lucknow", "lko": "Lucknow", "lkw": "Lucknow",
    "kanpur": "Kanpur", "knp": "Kanpur",
    "nagpur": "Nagpur", "nag": "Nagpur",
    "indore": "Indore", "idr": "Indore",
    "thane": "Thane", "thn": "Thane",
    "bhopal": "Bhopal", "bpl": "Bhopal",
    "vadodara": "Vadodara", "vad": "Vadodara", "baroda": "Vadodara",
    "rajkot": "Rajkot", "raj": "Rajkot",
    "vizag": "Visakhapatnam", "visakhapatnam": "Visakhapatnam", "vtz": "Visakhapatnam",
    "patna": "Patna", "pat": "Patna",
    "coimbatore": "Coimbatore", "cbe": "Coimbatore",
    "agra": "Agra",
    "varanasi": "Varanasi", "benaras": "Varanasi",
    "noida": "Noida",
    "gurgaon": "Gurugram", "gurugram": "Gurugram", "ggn": "Gurugram",
    "chandigarh": "Chandigarh", "chd": "Chandigarh",
    "kochi": "Kochi", "cochin": "Kochi",
    "guwahati": "Guwahati", "gwh": "Guwahati",
    "bhubaneswar": "Bhubaneswar", "bbsr": "Bhubaneswar",
    "dehradun": "Dehradun", "ddn": "Dehradun",
    "ranchi": "Ranchi", "rnc": "Ranchi",
    "gandhinagar": "Gandhinagar", "gnr": "Gandhinagar",
    "trivandrum": "Thiruvananthapuram", "thiruvananthapuram": "Thiruvananthapuram",
    "trv": "Thiruvananthapuram",
    "raipur": "Raipur", "rpr": "Raipur",
    "goa": "Goa", "panaji": "Goa",
    "mysore": "Mysuru", "mysuru": "Mysuru",
    "mangalore": "Mangaluru", "mangaluru": "Mangaluru",
    "jodhpur": "Jodhpur",
    "udaipur": "Udaipur",
    "amritsar": "Amritsar",
    "ludhiana": "Ludhiana",
    "nashik": "Nashik", "nasik": "Nashik",
    "aurangabad": "Aurangabad",
    "jalandhar": "Jalandhar",
    "gwalior": "Gwalior",
    "allahabad": "Prayagraj", "prayagraj": "Prayagraj",
    "meerut": "Meerut",
    "trichy": "Tiruchirappalli", "tiruchirappalli": "Tiruchirappalli",
})


# ------------------------------------------------------------------ #
#  RDAP: patrones de círculo de telecom en nombre/handle/remarks      #
# ------------------------------------------------------------------ #
class CirclePattern(NamedTuple):
    pattern: re.Pattern
    kind:    str   # "state_code" | "city_code"


RDAP_CIRCLE_PATTERNS: tuple[CirclePattern, ...] = (
    CirclePattern(re.compile(r"AIRTEL[_-]([A-Z]{2,4})\b", re.IGNORECASE), "state_code"),
    CirclePattern(re.compile(r"ABTS[_-]([A-Z]{2,6})[_-]", re.IGNORECASE), "city_code"),
    CirclePattern(re.compile(r"RJIO[_-](?:IN[_-])?([A-Z]{2,4})\b", re.IGNORECASE), "state_code"),
    CirclePattern(re.compile(r"BSNL(?:NET)?[_-]([A-Z]{2,6})\b", re.IGNORECASE), "state_code"),
    CirclePattern(re.compile(r"(?:VODAFONE|IDEA|VI)[_-]([A-Z]{2,4})\b", re.IGNORECASE), "state_code"),
    CirclePattern(re.compile(r"\bIN[_-]([A-Z]{2,4})\b", re.IGNORECASE), "state_code"),
)

# Códigos de área de servicio licenciada (TRAI) → estado
CIRCLE_STATES = MappingProxyType({
    "GJ": "Gujarat", "MH": "Maharashtra", "KA": "Karnataka", "TN": "Tamil Nadu",
    "AP": "Andhra Pradesh", "TS": "Telangana", "TL": "Telangana",
    "WB": "West Bengal", "DL": "Delhi", "UP": "Uttar Pradesh", "MP": "Madhya Pradesh",
    "RJ": "Rajasthan", "PB": "Punjab", "HR": "Haryana", "KL": "Kerala",
    "OR": "Odisha", "OD": "Odisha", "BB": "Odisha",
    "AS": "Assam", "BR": "Bihar", "JH": "Jharkhand",
    "CT": "Chhattisgarh", "CG": "Chhattisgarh",
    "UK": "Uttarakhand", "GA": "Goa", "HP": "Himachal Pradesh",
    "JK": "Jammu and Kashmir", "MN": "Manipur", "ML": "Meghalaya",
    "TR": "Tripura", "NE": "North East",
    # Códigos largos usados por algunos ISPs
    "GUJ": "Gujarat", "MAH": "Maharashtra", "MAR": "Maharashtra",
    "KAR": "Karnataka", "TML": "Tamil Nadu", "AND": "Andhra Pradesh",
    "TEL": "Telangana", "RAJ": "Rajasthan", "PUN": "Punjab", "KER": "Kerala",
})

# Códigos de ciudad (ABTS-{CITY} de Airtel broadband) → ciudad canónica
CIRCLE_CITIES = MappingProxyType({
    "MUM": "Mumbai", "DEL": "Delhi", "AHM": "Ahmedabad", "AMD": "Ahmedabad",
    "BLR": "Bangalore", "BANG": "Bangalore", "CHE": "Chennai", "MAA": "Chennai",
    "HYD": "Hyderabad", "KOL": "Kolkata", "PUN": "Pune", "JAI": "Jaipur",
    "SRT": "Surat", "SURT": "Surat", "VAD": "Vadodara", "RAJ": "Rajkot",
    "LKO": "Lucknow", "BPL": "Bhopal", "NAG": "Nagpur", "IDR": "Indore",
})


# ------------------------------------------------------------------ #
#  PoPs del edge (Cloudflare) en India                                #
#  weight = peso en la fusión de la evidencia de estado del PoP      #
# ------------------------------------------------------------------ #
class EdgePop(NamedTuple):
    state:      str
    city:       str
    candidates: tuple[str, ...]
    weight:     float


EDGE_POPS = MappingProxyType({
    # Tier 1 (metros, ruteo muy confiable)
    "BOM": EdgePop("Maharashtra", "Mumbai", ("Mumbai", "Pune", "Nashik", "Aurangabad"), 38),
    "DEL": EdgePop("Delhi", "Delhi", ("Delhi", "Noida", "Gurugram", "Faridabad"), 38),
    "BLR": EdgePop("Karnataka", "Bangalore", ("Bangalore", "Mysuru", "Mangaluru", "Hubli"), 38),
    "MAA": EdgePop("Tamil Nadu", "Chennai", ("Chennai", "Coimbatore", "Madurai", "Salem"), 35),
    "HYD": EdgePop("Telangana", "Hyderabad", ("Hyderabad", "Warangal", "Vijayawada"), 35),
    "CCU": EdgePop("West Bengal", "Kolkata", ("Kolkata", "Bhubaneswar", "Patna", "Guwahati"), 35),
    # Tier 2
    "AMD": EdgePop("Gujarat", "Ahmedabad", ("Ahmedabad", "Surat", "Vadodara", "Rajkot"), 35),
    "COK": EdgePop("Kerala", "Kochi", ("Kochi", "Thiruvananthapuram", "Kozhikode"), 33),
    "JAI": EdgePop("Rajasthan", "Jaipur", ("Jaipur", "Jodhpur", "Udaipur", "Kota"), 33),
    "IDR": EdgePop("Madhya Pradesh", "Indore", ("Indore", "Bhopal", "Jabalpur"), 30),
    "PNQ": EdgePop("Maharashtra", "Pune", ("Pune", "Nashik", "Kolhapur", "Solapur"), 30),
    "NAG": EdgePop("Maharashtra", "Nagpur", ("Nagpur", "Amravati", "Chandrapur"), 28),
    "IXC": EdgePop("Punjab", "Chandigarh", ("Chandigarh", "Amritsar", "Ludhiana", "Patiala"), 28),
    "LKO": EdgePop("Uttar Pradesh", "Lucknow", ("Lucknow", "Kanpur", "Agra", "Varanasi"), 28),
    "BBI": EdgePop("Odisha", "Bhubaneswar", ("Bhubaneswar", "Cuttack", "Rourkela"), 25),
    "TRV": EdgePop("Kerala", "Thiruvananthapuram", ("Thiruvananthapuram", "Kochi", "Kollam"), 25),
    "PAT": EdgePop("Bihar", "Patna", ("Patna", "Gaya", "Muzaffarpur"), 25),
    "VNS": EdgePop("Uttar Pradesh", "Varanasi", ("Varanasi", "Prayagraj", "Kanpur", "Gorakhpur"), 22),
    "SXV": EdgePop("Tamil Nadu", "Salem", ("Salem", "Coimbatore", "Madurai"), 20),
    "GAU": EdgePop("Assam", "Guwahati", ("Guwahati", "Shillong", "Agartala"), 20),
    "ATQ": EdgePop("Punjab", "Amritsar", ("Amritsar", "Jalandhar", "Ludhiana"), 20),
})


# ------------------------------------------------------------------ #
#  Subredes CGN (100.64.0.0/10) → gateway del operador móvil          #
#  Clave: primeros tres octetos de la IP local reportada por WebRTC  #
# ------------------------------------------------------------------ #
class CgnGateway(NamedTuple):
    city:       str
    state:      str
    confidence: int
    isp:        str


CGN_SUBNETS = MappingProxyType({
    # Airtel Gujarat
    "100.74.32":   CgnGateway("Surat", "Gujarat", 62, "Airtel"),
    "100.74.33":   CgnGateway("Surat", "Gujarat", 62, "Airtel"),
    "100.74.48":   CgnGateway("Ahmedabad", "Gujarat", 62, "Airtel"),
    "100.74.49":   CgnGateway("Ahmedabad", "Gujarat", 62, "Airtel"),
    "100.74.64":   CgnGateway("Vadodara", "Gujarat", 62, "Airtel"),
    "100.74.65":   CgnGateway("Vadodara", "Gujarat", 62, "Airtel"),
    "100.74.80":   CgnGateway("Rajkot", "Gujarat", 62, "Airtel"),
    # Jio Gujarat
    "100.109.16":  CgnGateway("Surat", "Gujarat", 60, "Jio"),
    "100.109.17":  CgnGateway("Surat", "Gujarat", 60, "Jio"),
    "100.109.32":  CgnGateway("Ahmedabad", "Gujarat", 60, "Jio"),
    "100.109.48":  CgnGateway("Vadodara", "Gujarat", 60, "Jio"),
    # Airtel Maharashtra
    "100.74.96":   CgnGateway("Mumbai", "Maharashtra", 62, "Airtel"),
    "100.74.97":   CgnGateway("Mumbai", "Maharashtra", 62, "Airtel"),
    "100.74.112":  CgnGateway("Pune", "Maharashtra", 62, "Airtel"),
    "100.74.128":  CgnGateway("Nagpur", "Maharashtra", 62, "Airtel"),
    # Jio Maharashtra
    "100.109.64":  CgnGateway("Mumbai", "Maharashtra", 60, "Jio"),
    "100.109.80":  CgnGateway("Pune", "Maharashtra", 60, "Jio"),
    # Airtel Karnataka / Tamil Nadu
    "100.74.144":  CgnGateway("Bangalore", "Karnataka", 62, "Airtel"),
    "100.74.160":  CgnGateway("Mysuru", "Karnataka", 58, "Airtel"),
    "100.74.176":  CgnGateway("Chennai", "Tamil Nadu", 62, "Airtel"),
    "100.74.192":  CgnGateway("Coimbatore", "Tamil Nadu", 58, "Airtel"),
    # Jio Karnataka / Tamil Nadu
    "100.109.96":  CgnGateway("Bangalore", "Karnataka", 60, "Jio"),
    "100.109.112": CgnGateway("Chennai", "Tamil Nadu", 60, "Jio"),
    # Delhi
    "100.74.208":  CgnGateway("Delhi", "Delhi", 62, "Airtel"),
    "100.74.209":  CgnGateway("Delhi", "Delhi", 62, "Airtel"),
    "100.109.128": CgnGateway("Delhi", "Delhi", 60, "Jio"),
    # Airtel Rajasthan / Uttar Pradesh
    "100.74.220":  CgnGateway("Jaipur", "Rajasthan", 60, "Airtel"),
    "100.74.224":  CgnGateway("Lucknow", "Uttar Pradesh", 58, "Airtel"),
    "100.74.232":  CgnGateway("Agra", "Uttar Pradesh", 55, "Airtel"),
})


# ------------------------------------------------------------------ #
#  ISO 3166 alpha-2 → nombre de país (lo que manda el edge)          #
# ------------------------------------------------------------------ #
COUNTRY_NAMES = MappingProxyType({
    "IN": "India", "US": "United States", "GB": "United Kingdom",
    "AE": "United Arab Emirates", "SG": "Singapore", "AU": "Australia",
    "CA": "Canada", "DE": "Germany", "FR": "France", "JP": "Japan",
    "CN": "China", "PK": "Pakistan", "BD": "Bangladesh", "NP": "Nepal",
    "LK": "Sri Lanka",
})


# ------------------------------------------------------------------ #
#  Palabras clave para el scoring de VPN                              #
# ------------------------------------------------------------------ #
VPN_KEYWORDS: tuple[str, ...] = (
    "vpn", "proxy", "tunnel", "relay", "node", "exit",
    "tor", "anon", "anonymous", "privacy", "hide", "mask",
)

HOSTING_KEYWORDS: tuple[str, ...] = (
    "amazon", "amazonaws", "digitalocean", "ovh", "linode",
    "vultr", "hetzner", "cloudflare", "azure", "googlecloud",
    "gcloud", "rackspace", "softlayer", "choopa", "contabo",
)


# ─────────────────────────────────────────────────────────────────────
# Normalizadores
# ─────────────────────────────────────────────────────────────────────

def normalize_city(name: Optional[str]) -> Optional[str]:
    """Devuelve el nombre canónico de una ciudad (Bengaluru → Bangalore)."""
    if not name:
        return None
    cleaned = " ".join(str(name).split())
    if not cleaned:
        return None
    return CITY_ALIASES.get(cleaned.casefold(), cleaned)


def city_key(name: Optional[str]) -> str:
    """Clave de comparación insensible a mayúsculas y a alias."""
    canonical = normalize_city(name)
    return canonical.casefold() if canonical else ""


def normalize_state(state: Optional[str]) -> str:
    """Clave normalizada en minúsculas; "" cuando no hay estado."""
    if not state:
        return ""
    key = " ".join(str(state).split()).lower()
    return STATE_ALIASES.get(key, key)


def state_for_city(city: Optional[str]) -> Optional[str]:
    canonical = normalize_city(city)
    if not canonical:
        return None
    return CITY_STATES.get(canonical)


def expand_country_code(code: Optional[str]) -> Optional[str]:
    if not code:
        return None
    return COUNTRY_NAMES.get(code.strip().upper(), code.strip())


def normalize_asn(value) -> Optional[str]:
    """"AS24560 Bharti Airtel" / 24560 / "as24560" → "AS24560"."""
    if value is None or value == "":
        return None
    token = str(value).strip().split(" ")[0].upper()
    if not token:
        return None
    if not token.startswith("AS"):
        token = f"AS{token}"
    return token
