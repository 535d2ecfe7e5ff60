"""
classtable – WakeUp timetable import + "who is in class right now" queries.
"""
