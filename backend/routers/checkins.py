from datetime import date

from fastapi import APIRouter, Depends, HTTPException

from backend.deps import get_store
from backend.schemas import CommentUpdate, TourUpdate
from backend.services.checkins import amend_departure_comment, amend_tour, list_checkins
from backend.services.export import checkin_rows
from database.db import DocumentStore

router = APIRouter()


@router.get("/checkins")
def checkins(day: date | None = None, store: DocumentStore = Depends(get_store)):
    return list_checkins(store, day=day)


@router.get("/checkins/export")
def export_checkins(day: date | None = None, store: DocumentStore = Depends(get_store)):
    return checkin_rows(list_checkins(store, day=day))


@router.patch("/checkins/{checkin_id}/comment")
def update_comment(checkin_id: str, payload: CommentUpdate, store: DocumentStore = Depends(get_store)):
    outcome, event = amend_departure_comment(store, checkin_id, payload.comment.strip())
    if outcome == "NOT_FOUND":
        raise HTTPException(status_code=404, detail="Check-in not found.")
    if outcome == "NOT_DEPARTURE":
        raise HTTPException(status_code=400, detail="Comments can only be added to a departure.")
    return event


@router.patch("/checkins/{checkin_id}/tour")
def update_tour(checkin_id: str, payload: TourUpdate, store: DocumentStore = Depends(get_store)):
    outcome, event = amend_tour(store, checkin_id, payload.tour.strip())
    if outcome == "NOT_FOUND":
        raise HTTPException(status_code=404, detail="Check-in not found.")
    return event
