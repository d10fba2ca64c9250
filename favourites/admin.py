from django.contrib import admin
from .models import Favourite, FilmNote


@admin.register(Favourite)
class FavouriteAdmin(admin.ModelAdmin):
    list_display = ("user", "film_title", "film_id", "film_type", "created_at")
    search_fields = ("user__username", "film_title")
    list_filter = ("film_type", "created_at")
    readonly_fields = ("created_at", "updated_at")


@admin.register(FilmNote)
class FilmNoteAdmin(admin.ModelAdmin):
    list_display = ("user", "film_id", "note_type", "created_at")
    search_fields = ("user__username", "note_text")
    list_filter = ("note_type",)
    readonly_fields = ("created_at", "updated_at")
