from pydicom.tag import Tag


class DicomTags:
    # General tags
    modality = Tag(0x0008, 0x0060)
    sop_class_uid = Tag(0x0008, 0x0016)
    sop_instance_uid = Tag(0x0008, 0x0018)
    series_instance_uid = Tag(0x0020, 0x000E)
    frame_of_reference_uid = Tag(0x0020, 0x0052)
    referenced_sop_instance_uid = Tag(0x0008, 0x1155)
    referenced_rt_plan_sequence = Tag(0x300C, 0x0002)

    # Image geometry
    image_position_patient = Tag(0x0020, 0x0032)
    image_orientation_patient = Tag(0x0020, 0x0037)
    pixel_spacing = Tag(0x0028, 0x0030)
    rows = Tag(0x0028, 0x0010)
    columns = Tag(0x0028, 0x0011)


class RTPlanTags:
    rt_plan_label = Tag(0x300A, 0x0002)
    rt_plan_name = Tag(0x300A, 0x0003)
    rt_plan_description = Tag(0x300A, 0x0004)
    rt_plan_date = Tag(0x300A, 0x0006)
    rt_plan_time = Tag(0x300A, 0x0007)
    rt_plan_geometry = Tag(0x300A, 0x000C)

    dose_reference_sequence = Tag(0x300A, 0x0010)
    dose_reference_structure_type = Tag(0x300A, 0x0014)
    dose_reference_description = Tag(0x300A, 0x0016)
    target_prescription_dose = Tag(0x300A, 0x0026)

    fraction_group_sequence = Tag(0x300A, 0x0070)
    number_of_fractions_planned = Tag(0x300A, 0x0078)
    referenced_beam_sequence = Tag(0x300C, 0x0004)
    beam_dose = Tag(0x300A, 0x0084)


class RTDoseTags:
    dose_units = Tag(0x3004, 0x0002)
    dose_type = Tag(0x3004, 0x0004)
    dose_comment = Tag(0x3004, 0x0006)
    dose_summation_type = Tag(0x3004, 0x000A)
    grid_frame_offset_vector = Tag(0x3004, 0x000C)
    dose_grid_scaling = Tag(0x3004, 0x000E)

    dvh_sequence = Tag(0x3004, 0x0050)
    dvh_referenced_roi_sequence = Tag(0x3004, 0x0060)
    referenced_roi_number = Tag(0x3006, 0x0084)
    dvh_type = Tag(0x3004, 0x0001)
    dvh_dose_scaling = Tag(0x3004, 0x0052)
    dvh_volume_units = Tag(0x3004, 0x0054)
    dvh_number_of_bins = Tag(0x3004, 0x0056)
    dvh_data = Tag(0x3004, 0x0058)
    dvh_minimum_dose = Tag(0x3004, 0x0070)
    dvh_maximum_dose = Tag(0x3004, 0x0072)
    dvh_mean_dose = Tag(0x3004, 0x0074)


class RTStructTags:
    structure_set_label = Tag(0x3006, 0x0002)
    structure_set_name = Tag(0x3006, 0x0004)
    structure_set_roi_sequence = Tag(0x3006, 0x0020)
    roi_number = Tag(0x3006, 0x0022)
    roi_name = Tag(0x3006, 0x0026)
    roi_contour_sequence = Tag(0x3006, 0x0039)
    referenced_roi_number = Tag(0x3006, 0x0084)
    roi_display_color = Tag(0x3006, 0x002A)
    contour_sequence = Tag(0x3006, 0x0040)
    contour_geometric_type = Tag(0x3006, 0x0042)
    contour_data = Tag(0x3006, 0x0050)
    rt_roi_observations_sequence = Tag(0x3006, 0x0080)
    rt_roi_interpreted_type = Tag(0x3006, 0x00A4)
