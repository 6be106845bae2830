import logging
import os
import re
import time
from contextlib import asynccontextmanager
from typing import List, Optional

from fastapi import FastAPI, File, Form, HTTPException, Query, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel

import database
from database import (
    collection_path,
    create_document,
    delete_document,
    ensure_directories,
    get_documents,
    read_collection,
    update_document,
    utcnow,
    write_collection,
)
from filters import CONTACT_RULES, INQUIRY_RULES, apply_filters, submission_stats
from schemas import (
    CompanyData,
    ContactCreate,
    ContactUpdate,
    DeleteImageRequest,
    Frame,
    InquiryCreate,
    InquiryUpdate,
    Sunglasses,
)

logger = logging.getLogger(__name__)

MAX_UPLOAD_BYTES = 10 * 1024 * 1024


@asynccontextmanager
async def lifespan(app: FastAPI):
    added = ensure_seeded()
    logger.info("Data directory ready (%s)", added)
    yield


app = FastAPI(title="Optical Store API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.mount("/images", StaticFiles(directory=database.IMAGES_DIR, check_dir=False), name="images")

# Helpers

def load_or_500(collection: str, label: str):
    data = read_collection(collection)
    if data is None:
        raise HTTPException(status_code=500, detail=f"Failed to read {label} data")
    return data


def save_or_500(collection: str, data, label: str):
    if not write_collection(collection, data):
        raise HTTPException(status_code=500, detail=f"Failed to save {label} data")


def safe_filename(name: str) -> str:
    return re.sub(r"[^a-zA-Z0-9.-]", "_", os.path.basename(name)).lower()


def image_file_for(image_path: str):
    """Local file behind an /images/... path; 400 if it points outside the images directory."""
    relative = image_path.split("?", 1)[0]
    relative = re.sub(r"^/?images/", "", relative).lstrip("/")
    root = database.IMAGES_DIR.resolve()
    target = (root / relative).resolve()
    if target == root or root not in target.parents:
        raise HTTPException(status_code=400, detail="Invalid image path")
    return target

# Root & health
@app.get("/")
def read_root():
    return {"message": "Optical Store Backend Running"}


@app.get("/api/health")
def health():
    return {
        "status": "OK",
        "message": "Optical Database API is running",
        "timestamp": utcnow().isoformat(),
        "collections": {name: collection_path(name).exists() for name in database.COLLECTION_FILES},
    }

# Catalog collections (always read and written whole)
@app.get("/api/frames")
def get_frames():
    return load_or_500("frames", "frames")


@app.post("/api/frames")
def save_frames(frames: List[Frame]):
    save_or_500("frames", [f.to_wire() for f in frames], "frames")
    return {"success": True, "message": "Frames data updated successfully", "count": len(frames)}


@app.get("/api/sunglasses")
def get_sunglasses():
    return load_or_500("sunglasses", "sunglasses")


@app.post("/api/sunglasses")
def save_sunglasses(sunglasses: List[Sunglasses]):
    save_or_500("sunglasses", [s.to_wire() for s in sunglasses], "sunglasses")
    return {"success": True, "message": "Sunglasses data updated successfully", "count": len(sunglasses)}


@app.get("/api/company")
def get_company():
    return load_or_500("company", "company")


@app.post("/api/company")
def save_company(company: CompanyData):
    save_or_500("company", company.to_wire(), "company")
    return {"success": True, "message": "Company data updated successfully"}

# Images
@app.post("/api/upload-image")
async def upload_image(
    image: UploadFile = File(...),
    folder: str = Form("frames"),
    filename: Optional[str] = Form(None),
):
    if not (image.content_type or "").startswith("image/"):
        raise HTTPException(status_code=400, detail="Only image files are allowed")
    if folder not in database.IMAGE_FOLDERS:
        raise HTTPException(status_code=400, detail=f"Unknown image folder: {folder}")
    content = await image.read()
    if len(content) > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=400, detail="File too large. Max size is 10MB")

    original = image.filename or "image"
    name = safe_filename(filename) if filename else f"{int(time.time() * 1000)}_{safe_filename(original)}"
    target = database.IMAGES_DIR / folder / name
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content)
    except OSError as e:
        logger.error("Error uploading image: %s", e)
        raise HTTPException(status_code=500, detail="Failed to upload image")

    logger.info("Image uploaded: %s", target)
    return {
        "success": True,
        "path": f"/images/{folder}/{name}",
        "originalName": original,
        "filename": name,
        "size": len(content),
    }


@app.delete("/api/delete-image")
def delete_image(body: DeleteImageRequest):
    path = body.image_path
    if not path:
        raise HTTPException(status_code=400, detail="No image path provided")
    if path.startswith(("http://", "https://")):
        return {"success": True, "message": "External URL - no deletion needed"}
    if path.startswith("data:"):
        return {"success": True, "message": "Data URL - no deletion needed"}

    target = image_file_for(path)
    if not target.exists():
        return {"success": True, "message": "File not found (already deleted)"}
    try:
        target.unlink()
    except OSError as e:
        logger.error("Error deleting image %s: %s", target, e)
        raise HTTPException(status_code=500, detail="Failed to delete image")
    logger.info("Image deleted: %s", target)
    return {"success": True, "message": "Image deleted successfully"}

# Inquiries
@app.get("/api/inquiries")
def list_inquiries(
    status: Optional[str] = None,
    priority: Optional[str] = None,
    product_type: Optional[str] = Query(None, alias="productType"),
    assigned_to: Optional[str] = Query(None, alias="assignedTo"),
):
    docs = load_or_500("inquiries", "inquiries")
    criteria = {"status": status, "priority": priority, "product_type": product_type, "assigned_to": assigned_to}
    return apply_filters(docs, criteria, INQUIRY_RULES)


@app.get("/api/inquiries/stats")
def inquiry_stats():
    return submission_stats(get_documents("inquiries")).to_wire()


@app.post("/api/inquiries", status_code=201)
def create_inquiry(inquiry: InquiryCreate):
    doc = {**inquiry.to_wire(), "status": "new", "priority": "medium"}
    created = create_document("inquiries", doc)
    if created is None:
        raise HTTPException(status_code=500, detail="Failed to save inquiry")
    return {"success": True, "message": "Inquiry created successfully", "inquiry": created}


@app.put("/api/inquiries/{inquiry_id}")
def update_inquiry(inquiry_id: str, changes: InquiryUpdate):
    try:
        updated = update_document("inquiries", inquiry_id,
                                  changes.model_dump(mode="json", by_alias=True, exclude_unset=True))
    except KeyError:
        raise HTTPException(status_code=404, detail="Inquiry not found")
    if updated is None:
        raise HTTPException(status_code=500, detail="Failed to update inquiry")
    return {"success": True, "message": "Inquiry updated successfully", "inquiry": updated}


@app.delete("/api/inquiries/{inquiry_id}")
def delete_inquiry(inquiry_id: str):
    try:
        deleted = delete_document("inquiries", inquiry_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Inquiry not found")
    if not deleted:
        raise HTTPException(status_code=500, detail="Failed to delete inquiry")
    return {"success": True, "message": "Inquiry deleted successfully"}

# Contacts
@app.get("/api/contacts")
def list_contacts(
    status: Optional[str] = None,
    priority: Optional[str] = None,
    service_interest: Optional[str] = Query(None, alias="serviceInterest"),
    assigned_to: Optional[str] = Query(None, alias="assignedTo"),
    source: Optional[str] = None,
):
    docs = load_or_500("contacts", "contacts")
    criteria = {
        "status": status,
        "priority": priority,
        "service_interest": service_interest,
        "assigned_to": assigned_to,
        "source": source,
    }
    return apply_filters(docs, criteria, CONTACT_RULES)


@app.get("/api/contacts/stats")
def contact_stats():
    return submission_stats(get_documents("contacts")).to_wire()


@app.post("/api/contacts", status_code=201)
def create_contact(contact: ContactCreate):
    # an id chosen by the contact form is kept
    doc = {**contact.to_wire(), "status": "new"}
    created = create_document("contacts", doc)
    if created is None:
        raise HTTPException(status_code=500, detail="Failed to save contact")
    return {"success": True, "message": "Contact created successfully", "contact": created}


@app.put("/api/contacts/{contact_id}")
def update_contact(contact_id: str, changes: ContactUpdate):
    try:
        updated = update_document("contacts", contact_id,
                                  changes.model_dump(mode="json", by_alias=True, exclude_unset=True))
    except KeyError:
        raise HTTPException(status_code=404, detail="Contact not found")
    if updated is None:
        raise HTTPException(status_code=500, detail="Failed to update contact")
    return {"success": True, "message": "Contact updated successfully", "contact": updated}


@app.delete("/api/contacts/{contact_id}")
def delete_contact(contact_id: str):
    try:
        deleted = delete_document("contacts", contact_id)
    except KeyError:
        raise HTTPException(status_code=404, detail="Contact not found")
    if not deleted:
        raise HTTPException(status_code=500, detail="Failed to delete contact")
    return {"success": True, "message": "Contact deleted successfully"}

# Seed demo catalog and company profile (only collections that are missing)
class SeedResponse(BaseModel):
    frames: int
    sunglasses: int
    company: bool


def demo_frames() -> List[Frame]:
    rows = [
        ("Classic Round", "Ray-Ban", "metal", "round", "gold", 149.0, "unisex"),
        ("Urban Square", "Oakley", "acetate", "square", "black", 189.0, "men"),
        ("Soft Cat-Eye", "Vogue", "acetate", "cat-eye", "tortoise", 129.0, "women"),
        ("Featherlight Titan", "Silhouette", "titanium", "rectangle", "silver", 259.0, "unisex"),
    ]
    return [
        Frame(
            id=database.new_id("frames"),
            name=name,
            brand=brand,
            material=material,
            shape=shape,
            color=color,
            price=price,
            gender=gender,
            description=f"{brand} {name.lower()} frame for everyday wear.",
            features=["Spring hinges", "Anti-reflective ready"],
            frame_size={"lens_width": 50, "bridge_width": 20, "temple_length": 145},
        )
        for name, brand, material, shape, color, price, gender in rows
    ]


def demo_sunglasses() -> List[Sunglasses]:
    rows = [
        ("Aviator Polar", "Ray-Ban", "polarized", "metal", "aviator", "gold", 199.0, True),
        ("Coastal Wayfarer", "Oakley", "sport", "plastic", "wayfarer", "black", 169.0, True),
        ("Riviera Oversized", "Prada", "luxury", "acetate", "oversized", "brown", 349.0, False),
    ]
    return [
        Sunglasses(
            id=database.new_id("sunglasses"),
            name=name,
            brand=brand,
            category=category,
            material=material,
            shape=shape,
            color=color,
            price=price,
            description=f"{brand} {name.lower()} sunglasses.",
            features=["100% UV protection"],
            frame_size={"lens_width": 58, "bridge_width": 14, "temple_length": 140},
            lens_features={"uv_protection": "100% UV400", "polarized": polarized},
        )
        for name, brand, category, material, shape, color, price, polarized in rows
    ]


def demo_company() -> CompanyData:
    weekdays = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday"]
    hours = {day: {"open": "09:00", "close": "18:00"} for day in weekdays}
    hours["sunday"] = {"closed": True}
    return CompanyData(
        company_info={"name": "Optical Store", "tagline": "See the world clearly"},
        business_hours=hours,
        services=[{"id": "service-eye-exam", "name": "Eye Examination", "duration": "30 minutes"}],
    )


def ensure_seeded() -> SeedResponse:
    ensure_directories()
    added = SeedResponse(frames=0, sunglasses=0, company=False)
    if not collection_path("frames").exists():
        frames = demo_frames()
        if write_collection("frames", [f.to_wire() for f in frames]):
            added.frames = len(frames)
    if not collection_path("sunglasses").exists():
        sunglasses = demo_sunglasses()
        if write_collection("sunglasses", [s.to_wire() for s in sunglasses]):
            added.sunglasses = len(sunglasses)
    if not collection_path("company").exists():
        added.company = write_collection("company", demo_company().to_wire())
    for collection in ("inquiries", "contacts"):
        if not collection_path(collection).exists():
            write_collection(collection, [])
    return added



@app.post("/api/seed", response_model=SeedResponse)
def seed_data():
    return ensure_seeded()

if __name__ == "__main__":
    import uvicorn
    logging.basicConfig(level=logging.INFO)
    port = int(os.getenv("PORT", 3001))
    uvicorn.run(app, host="0.0.0.0", port=port)
